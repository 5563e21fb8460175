from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from cardshop.core import security
from cardshop.core.config import Settings
from cardshop.core.db import init_models
from cardshop.main import create_app
from cardshop.models.card import Card, CardStatus
from cardshop.models.product import Product, ProductStatus
from cardshop.models.user import User

CRON_SECRET = "cron-test-secret"


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    # bcrypt's minimum cost; real deployments keep the default
    monkeypatch.setattr(security, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
        JWT_SECRET="jwt-test-secret",
        CRON_SECRET=CRON_SECRET,
        ORDER_RATE_LIMIT_POINTS=1000,
        ORDER_QUERY_RATE_LIMIT_POINTS=1000,
        SITE_URL="http://shop.test",
    )


@pytest.fixture
async def app(settings):
    app = create_app(settings)
    await init_models(app.state.engine)
    yield app
    await app.state.tasks.drain()
    await app.state.engine.dispose()


@pytest.fixture
async def db(app):
    async with app.state.sessionmaker() as session:
        yield session


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class RecordingListener:
    def __init__(self):
        self.completed = []

    def order_completed(self, order_id: int) -> None:
        self.completed.append(order_id)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def seed_product(app):
    """Factory: an ACTIVE product with ``cards`` UNSOLD cards."""

    async def _seed(*, price="50.00", cards=3, max_quantity=10, slug="steam-key", status=ProductStatus.ACTIVE):
        async with app.state.sessionmaker() as s:
            p = Product(
                name="Steam Key",
                slug=slug,
                price=Decimal(price),
                max_quantity=max_quantity,
                status=status,
            )
            s.add(p)
            await s.flush()
            s.add_all(
                [Card(product_id=p.id, content=f"{slug}-CARD-{i}", status=CardStatus.UNSOLD) for i in range(cards)]
            )
            await s.commit()
            return int(p.id)

    return _seed


@pytest.fixture
async def admin_user(app):
    async with app.state.sessionmaker() as s:
        u = User(
            email="admin@shop.test",
            password_hash=security.hash_password("admin-pass-123"),
            role="admin",
            name="Admin",
        )
        s.add(u)
        await s.commit()
        return u


@pytest.fixture
def admin_headers(admin_user, settings):
    token = security.create_access_token(settings, user_id=admin_user.id, role="admin")
    return {"Authorization": f"Bearer {token}"}
