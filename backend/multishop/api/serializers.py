"""Plain-dict renderings of models for JSON responses. Money goes out as numbers."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from multishop.db.enums import enum_value


def money(value) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def ts(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def jsonable(value):
    """Recursively convert Decimals, enums and datetimes inside plain containers."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if hasattr(value, 'value'):
        return value.value
    return value


def serialize_tenant(tenant) -> dict:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "subdomain": tenant.subdomain,
        "domain": tenant.domain,
        "email": tenant.email,
        "phone": tenant.phone,
        "address": tenant.address,
        "logo": tenant.logo,
        "theme": tenant.theme or {},
        "settings": tenant.settings or {},
        "status": enum_value(tenant.status),
        "subscription_plan": enum_value(tenant.subscription_plan),
        "subscription_status": enum_value(tenant.subscription_status),
    }


def serialize_public_tenant(tenant) -> dict:
    return {
        "name": tenant.name,
        "subdomain": tenant.subdomain,
        "domain": tenant.domain,
        "logo": tenant.logo,
        "theme": tenant.theme or {},
        "settings": tenant.settings or {},
        "email": tenant.email,
        "phone": tenant.phone,
        "address": tenant.address,
    }


def serialize_user(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": enum_value(user.role),
        "phone": user.phone,
        "avatar": user.avatar,
        "is_email_verified": user.is_email_verified,
        "last_login_at": ts(user.last_login_at),
        "status": enum_value(user.status),
    }


def serialize_category(category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "image": category.image,
        "parent_id": category.parent_id,
        "sort_order": category.sort_order,
        "is_active": category.is_active,
        "created_at": ts(category.created_at),
    }


def serialize_category_tree(nodes: list) -> list:
    return [
        {**serialize_category(node["category"]), "children": serialize_category_tree(node["children"])}
        for node in nodes
    ]


def serialize_product(product, include_category: bool = False, public: bool = False) -> dict:
    data = {
        "id": product.id,
        "category_id": product.category_id,
        "name": product.name,
        "slug": product.slug,
        "description": product.description,
        "short_description": product.short_description,
        "sku": product.sku,
        "price": money(product.price),
        "compare_price": money(product.compare_price),
        "images": product.images or [],
        "inventory": product.inventory,
        "track_inventory": product.track_inventory,
        "weight": money(product.weight),
        "dimensions": product.dimensions,
        "tags": product.tags or [],
        "meta_title": product.meta_title,
        "meta_description": product.meta_description,
        "status": enum_value(product.status),
        "is_featured": product.is_featured,
        "sales_count": product.sales_count,
        "view_count": product.view_count,
        "created_at": ts(product.created_at),
    }
    if not public:
        data["cost_price"] = money(product.cost_price)
    if include_category:
        data["category"] = serialize_category(product.category) if product.category else None
    return data


def serialize_customer(customer) -> dict:
    return {
        "id": customer.id,
        "email": customer.email,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "phone": customer.phone,
        "date_of_birth": ts(customer.date_of_birth),
        "address": customer.address,
        "city": customer.city,
        "state": customer.state,
        "country": customer.country,
        "zip_code": customer.zip_code,
        "notes": customer.notes,
        "total_orders": customer.total_orders,
        "total_spent": money(customer.total_spent),
        "last_order_at": ts(customer.last_order_at),
        "status": enum_value(customer.status),
        "created_at": ts(customer.created_at),
    }


def serialize_order_item(item) -> dict:
    return {
        "id": item.id,
        "product_id": item.product_id,
        "product_name": item.product_name,
        "product_sku": item.product_sku,
        "product_image": item.product_image,
        "quantity": item.quantity,
        "unit_price": money(item.unit_price),
        "total_price": money(item.total_price),
    }


def serialize_order(order, include_items: bool = True, include_customer: bool = True) -> dict:
    data = {
        "id": order.id,
        "customer_id": order.customer_id,
        "order_number": order.order_number,
        "status": enum_value(order.status),
        "payment_status": enum_value(order.payment_status),
        "payment_method": order.payment_method,
        "subtotal": money(order.subtotal),
        "tax_amount": money(order.tax_amount),
        "shipping_amount": money(order.shipping_amount),
        "discount_amount": money(order.discount_amount),
        "total_amount": money(order.total_amount),
        "currency": order.currency,
        "billing_address": order.billing_address,
        "shipping_address": order.shipping_address,
        "notes": order.notes,
        "tracking_number": order.tracking_number,
        "paid_at": ts(order.paid_at),
        "shipped_at": ts(order.shipped_at),
        "delivered_at": ts(order.delivered_at),
        "created_at": ts(order.created_at),
    }
    if include_items:
        data["items"] = [serialize_order_item(i) for i in order.items]
    if include_customer:
        data["customer"] = serialize_customer(order.customer) if order.customer else None
    return data
