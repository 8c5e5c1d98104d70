# coupon_service/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from coupon_service.models.coupon import Coupon  # noqa: F401
from coupon_service.models.external_order import ExternalOrder  # noqa: F401
from coupon_service.models.proxy_order import PROXY_ORDER_MODELS, SexyteaOrder  # noqa: F401
