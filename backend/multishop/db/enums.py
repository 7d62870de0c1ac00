import enum


class TenantStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


class SubscriptionPlan(str, enum.Enum):
    basic = "basic"
    premium = "premium"
    enterprise = "enterprise"


class SubscriptionStatus(str, enum.Enum):
    active = "active"
    cancelled = "cancelled"
    past_due = "past_due"


class UserRole(str, enum.Enum):
    owner = "owner"
    admin = "admin"
    staff = "staff"


class UserStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class CustomerStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class ProductStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    archived = "archived"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"
    partially_refunded = "partially_refunded"


def enum_value(value):
    """Plain string for an enum member or an already-plain column value."""
    return value.value if hasattr(value, 'value') else value
