from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, ForeignKey, Text, Numeric, JSON,
    Index, UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from multishop.db.database import Base
from multishop.db.enums import (
    TenantStatus, SubscriptionPlan, SubscriptionStatus,
    UserRole, UserStatus, CustomerStatus, ProductStatus,
    OrderStatus, PaymentStatus,
)


class Tenant(Base):
    """A shop. Every other row in the system belongs to exactly one tenant."""
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    domain = Column(String(255), unique=True, index=True, nullable=False)
    subdomain = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(50))
    address = Column(Text)
    logo = Column(String(500))
    theme = Column(JSON, default=dict)
    settings = Column(JSON, default=dict)
    status = Column(SAEnum(TenantStatus, name="tenantstatus"), default=TenantStatus.active.value, nullable=False)
    subscription_plan = Column(SAEnum(SubscriptionPlan, name="subscriptionplan"), default=SubscriptionPlan.basic.value, nullable=False)
    subscription_status = Column(SAEnum(SubscriptionStatus, name="subscriptionstatus"), default=SubscriptionStatus.active.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    users = relationship("User", back_populates="tenant")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        Index("ix_users_role", "role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String(255), index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(SAEnum(UserRole, name="userrole"), default=UserRole.staff.value, nullable=False)
    avatar = Column(String(500))
    phone = Column(String(50))
    is_email_verified = Column(Boolean, default=False, nullable=False)
    last_login_at = Column(DateTime(timezone=True))
    status = Column(SAEnum(UserStatus, name="userstatus"), default=UserStatus.active.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tenant = relationship("Tenant", back_populates="users")


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_categories_tenant_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(200), nullable=False)
    description = Column(Text)
    image = Column(String(500))
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    products = relationship("Product", back_populates="category")


class Product(Base):
    """Catalog product. `sales_count` moves only with order placement and cancellation; `inventory` also takes manual edits through update_product."""
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        UniqueConstraint("tenant_id", "slug", name="uq_products_tenant_slug"),
        Index("ix_products_tenant_status", "tenant_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    description = Column(Text)
    short_description = Column(Text)
    sku = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    compare_price = Column(Numeric(10, 2))
    cost_price = Column(Numeric(10, 2))
    images = Column(JSON, default=list, nullable=False)
    inventory = Column(Integer, default=0, nullable=False)
    track_inventory = Column(Boolean, default=True, nullable=False)
    weight = Column(Numeric(8, 2))
    dimensions = Column(JSON)
    tags = Column(JSON, default=list, nullable=False)
    meta_title = Column(String(255))
    meta_description = Column(Text)
    status = Column(SAEnum(ProductStatus, name="productstatus"), default=ProductStatus.draft.value, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    sales_count = Column(Integer, default=0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    category = relationship("Category", back_populates="products")


class Customer(Base):
    """Shop customer. Order counters are maintained incrementally by order placement."""
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(50))
    date_of_birth = Column(Date)
    address = Column(Text)
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    zip_code = Column(String(20))
    notes = Column(Text)
    total_orders = Column(Integer, default=0, nullable=False)
    total_spent = Column(Numeric(10, 2), default=0, nullable=False)
    last_order_at = Column(DateTime(timezone=True))
    status = Column(SAEnum(CustomerStatus, name="customerstatus"), default=CustomerStatus.active.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    orders = relationship("Order", back_populates="customer", order_by="Order.id.desc()")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_tenant_created_at", "tenant_id", "created_at"),
        Index("ix_orders_tenant_status", "tenant_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    order_number = Column(String(40), unique=True, index=True, nullable=False)
    status = Column(SAEnum(OrderStatus, name="orderstatus"), default=OrderStatus.pending.value, nullable=False)
    payment_status = Column(SAEnum(PaymentStatus, name="paymentstatus"), default=PaymentStatus.pending.value, nullable=False)
    payment_method = Column(String(50), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), default=0, nullable=False)
    shipping_amount = Column(Numeric(10, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(10, 2), default=0, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    billing_address = Column(JSON, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    notes = Column(Text)
    tracking_number = Column(String(100))
    paid_at = Column(DateTime(timezone=True))
    shipped_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    customer = relationship("Customer", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id", cascade="all, delete-orphan")


class OrderItem(Base):
    """Line item snapshot taken at order time; never updated afterwards."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(100), nullable=False)
    product_image = Column(String(500))
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="items")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_tenant_id", "tenant_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(100), nullable=False)
    target_type = Column(String(50))  # order, product, customer, ...
    target_id = Column(Integer)
    meta = Column(Text)  # JSON details
    request_id = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")
