from __future__ import annotations

import httpx

SITEVERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class TurnstileClient:
    def __init__(self, secret: str, *, timeout: float = 10):
        self.secret = secret
        self.timeout = timeout

    async def verify(self, token: str, remote_ip: str | None = None) -> dict:
        """
        Returns the siteverify body: {"success": bool, "error-codes": [...]}.
        Transport failures are reported as an unsuccessful verification.
        """
        data = {"secret": self.secret, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(SITEVERIFY_URL, data=data)
        except httpx.HTTPError:
            return {"success": False, "error-codes": ["internal-error"]}

        if r.status_code != 200:
            return {"success": False, "error-codes": [f"http-{r.status_code}"]}

        return r.json()
