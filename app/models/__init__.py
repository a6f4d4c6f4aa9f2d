# app/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from app.models.coupon import Coupon  # noqa: F401
from app.models.registration import Registration  # noqa: F401
