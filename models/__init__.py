# Import models so that SQLAlchemy metadata includes them on app startup
from .product import Product  # noqa: F401
from .payment_order import PaymentOrder  # noqa: F401
