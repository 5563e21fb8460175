from pydantic import BaseModel


class SweepOut(BaseModel):
    closed: int
    total: int
