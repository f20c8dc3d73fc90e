"""Typed plan limits.

A plan's feature map is a loosely-typed JSON blob where ``-1`` (or a missing
key) means "unlimited". It is parsed once into :class:`PlanLimits`, whose
fields are either :data:`UNLIMITED` or a :class:`Bounded` count.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union


class ResourceType(str, enum.Enum):
    """Countable tenant resources gated by plan quotas."""

    PRODUCT = "product"
    ORDER = "order"
    PAGE = "page"
    BLOG = "blog"
    STAFF = "staff"
    CUSTOMER = "customer"
    STORAGE = "storage"


class Unlimited:
    """Sentinel type for a limit that is never reached."""

    _instance: Optional["Unlimited"] = None

    def __new__(cls) -> "Unlimited":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"


UNLIMITED = Unlimited()


@dataclass(frozen=True)
class Bounded:
    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError(f"Plan limit must be an integer, got {self.value!r}")
        if self.value < 0:
            raise ValueError(f"Plan limit must be >= 0 or -1 for unlimited, got {self.value}")


Limit = Union[Bounded, Unlimited]


# Feature keys per resource; the first key wins, later ones are legacy aliases.
_FEATURE_KEYS: dict[ResourceType, tuple[str, ...]] = {
    ResourceType.PRODUCT: ("max_products", "product_permission_feature"),
    ResourceType.ORDER: ("max_orders",),
    ResourceType.PAGE: ("max_pages", "page_permission_feature"),
    ResourceType.BLOG: ("max_blogs", "blog_permission_feature"),
    ResourceType.STAFF: ("max_staff_users",),
    ResourceType.CUSTOMER: ("max_customers",),
    ResourceType.STORAGE: ("max_storage_mb", "storage_permission_feature"),
}


def parse_limit(raw: Any) -> Limit:
    """Convert a raw feature value into a :data:`Limit`.

    ``None`` and ``-1`` are unlimited. Numeric strings are accepted because
    older plans were saved from form input.
    """
    if raw is None:
        return UNLIMITED
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return UNLIMITED
        try:
            raw = int(raw)
        except ValueError:
            raise ValueError(f"Plan limit must be numeric, got {raw!r}") from None
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if raw == -1:
        return UNLIMITED
    return Bounded(raw)


@dataclass(frozen=True)
class PlanLimits:
    products: Limit = UNLIMITED
    orders: Limit = UNLIMITED
    pages: Limit = UNLIMITED
    blogs: Limit = UNLIMITED
    staff_users: Limit = UNLIMITED
    customers: Limit = UNLIMITED
    storage_mb: Limit = UNLIMITED

    @classmethod
    def from_features(cls, features: Optional[Mapping[str, Any]]) -> "PlanLimits":
        if not features:
            return cls()
        if not isinstance(features, Mapping):
            raise ValueError("Plan features must be a JSON object")

        values: dict[ResourceType, Limit] = {}
        for resource, keys in _FEATURE_KEYS.items():
            raw = None
            for key in keys:
                if features.get(key) is not None:
                    raw = features[key]
                    break
            values[resource] = parse_limit(raw)

        return cls(
            products=values[ResourceType.PRODUCT],
            orders=values[ResourceType.ORDER],
            pages=values[ResourceType.PAGE],
            blogs=values[ResourceType.BLOG],
            staff_users=values[ResourceType.STAFF],
            customers=values[ResourceType.CUSTOMER],
            storage_mb=values[ResourceType.STORAGE],
        )

    def for_resource(self, resource: ResourceType) -> Limit:
        return {
            ResourceType.PRODUCT: self.products,
            ResourceType.ORDER: self.orders,
            ResourceType.PAGE: self.pages,
            ResourceType.BLOG: self.blogs,
            ResourceType.STAFF: self.staff_users,
            ResourceType.CUSTOMER: self.customers,
            ResourceType.STORAGE: self.storage_mb,
        }[resource]

    def to_features(self) -> dict[str, int]:
        """Serialize back to the feature-map convention (``-1`` = unlimited)."""
        return {
            keys[0]: -1 if isinstance(limit, Unlimited) else limit.value
            for resource, keys in _FEATURE_KEYS.items()
            for limit in (self.for_resource(resource),)
        }
