# cardshop/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from cardshop.models.user import User  # noqa: F401

from cardshop.models.product import Product  # noqa: F401
from cardshop.models.card import Card  # noqa: F401
from cardshop.models.order import Order  # noqa: F401

# Peripheral: restock notifications on 0 -> N stock
from cardshop.models.restock_subscription import RestockSubscription  # noqa: F401
