from storefront.models.base import Base
from storefront.models import models  # noqa: F401  (register tables on Base.metadata)

__all__ = ["Base", "models"]
