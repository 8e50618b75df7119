"""
Record transforms.

Turn platform records (bulk JSONL objects and REST order payloads) into fact
rows keyed by the platform-native id. Monetary amounts arrive as strings and
default to 0; timestamps are normalized to tz-aware UTC.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from storesync.kernel.errors import RecordParseError
from storesync.kernel.time import parse_optional_iso8601

_GID_PREFIX = "gid://shopify/"

RecordTransform = Callable[[dict[str, Any], str, str, datetime], dict[str, Any]]


def parse_gid(value: Any) -> str | None:
    """`gid://shopify/Order/123` -> `123`. Plain ids pass through."""
    if value is None or value == "":
        return None
    text_value = str(value)
    if text_value.startswith(_GID_PREFIX):
        text_value = text_value.rsplit("/", 1)[-1]
    # Some ids carry a query suffix, e.g. `.../LineItem/1?foo=bar`
    return text_value.split("?", 1)[0] or None


def gid_type(value: Any) -> str | None:
    """`gid://shopify/Order/123` -> `Order`."""
    if not isinstance(value, str) or not value.startswith(_GID_PREFIX):
        return None
    parts = value[len(_GID_PREFIX):].split("/")
    return parts[0] if len(parts) >= 2 else None


def parse_money(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, dict):
        value = value.get("amount")
        if value is None:
            return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _obj(item: dict[str, Any], key: str) -> dict[str, Any]:
    """Nested object field; absent means empty, any other non-object is malformed."""
    value = item.get(key)
    if value is None or value == "":
        return {}
    if not isinstance(value, dict):
        raise RecordParseError(message=f"Expected an object for {key}, got {type(value).__name__}")
    return value


def _money_set(item: dict[str, Any], key: str) -> float:
    return parse_money(_obj(_obj(item, key), "shopMoney").get("amount"))


def _count(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _timestamp(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return parse_optional_iso8601(str(value))
    except ValueError as exc:
        raise RecordParseError(message=f"Invalid {field_name}: {value!r}") from exc


def _tags(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(tag) for tag in value) or None
    return str(value) or None


def _require_id(item: dict[str, Any], kind: str) -> str:
    native_id = parse_gid(item.get("id"))
    if not native_id:
        raise RecordParseError(message=f"{kind} record has no id")
    return native_id


def transform_order(item: dict[str, Any], brand_id: str, connection_id: str, synced_at: datetime) -> dict[str, Any]:
    customer = _obj(item, "customer")
    shipping = _obj(item, "shippingAddress")
    name = item.get("name")
    total_price_set = _obj(_obj(item, "totalPriceSet"), "shopMoney")
    return {
        "brand_id": brand_id,
        "order_id": _require_id(item, "Order"),
        "connection_id": connection_id,
        "name": name,
        "order_number": name.lstrip("#") if isinstance(name, str) else None,
        "email": item.get("email"),
        "currency": item.get("currencyCode") or total_price_set.get("currencyCode"),
        "total_price": _money_set(item, "totalPriceSet"),
        "subtotal_price": _money_set(item, "subtotalPriceSet"),
        "total_tax": _money_set(item, "totalTaxSet"),
        "total_discounts": _money_set(item, "totalDiscountsSet"),
        "financial_status": item.get("displayFinancialStatus"),
        "fulfillment_status": item.get("displayFulfillmentStatus"),
        "customer_id": parse_gid(customer.get("id")),
        "customer_email": customer.get("email") or item.get("email"),
        "customer_first_name": customer.get("firstName"),
        "customer_last_name": customer.get("lastName"),
        "tags": _tags(item.get("tags")),
        "note": item.get("note"),
        "shipping_city": shipping.get("city"),
        "shipping_province": shipping.get("province"),
        "shipping_country": shipping.get("country"),
        "shipping_country_code": shipping.get("countryCodeV2"),
        # Bulk output flattens children into their own lines; the count is
        # recomputed from stored line items once the file is processed.
        "line_items_count": len(_obj(item, "lineItems").get("edges") or []),
        "created_at": _timestamp(item.get("createdAt"), "createdAt"),
        "updated_at": _timestamp(item.get("updatedAt"), "updatedAt"),
        "processed_at": _timestamp(item.get("processedAt"), "processedAt"),
        "synced_at": synced_at,
    }


def transform_line_item(item: dict[str, Any], brand_id: str, connection_id: str, synced_at: datetime) -> dict[str, Any]:
    order_id = parse_gid(item.get("__parentId"))
    if not order_id:
        raise RecordParseError(message="LineItem record has no parent order")
    variant = _obj(item, "variant")
    product = _obj(variant, "product")
    original_total = _money_set(item, "originalTotalSet")
    discounted_total = _money_set(item, "discountedTotalSet") if item.get("discountedTotalSet") else original_total
    return {
        "brand_id": brand_id,
        "order_id": order_id,
        "line_item_id": _require_id(item, "LineItem"),
        "connection_id": connection_id,
        "name": item.get("name"),
        "title": item.get("title"),
        "quantity": _count(item.get("quantity")),
        "price": original_total,
        "total_discount": round(original_total - discounted_total, 2),
        "sku": variant.get("sku"),
        "product_id": parse_gid(product.get("id")),
        "variant_id": parse_gid(variant.get("id")),
        "variant_title": variant.get("title"),
        "vendor": item.get("vendor") or product.get("vendor"),
        "requires_shipping": item.get("requiresShipping"),
        "taxable": item.get("taxable"),
        "fulfillment_status": item.get("fulfillmentStatus"),
        "synced_at": synced_at,
    }


def transform_customer(item: dict[str, Any], brand_id: str, connection_id: str, synced_at: datetime) -> dict[str, Any]:
    spent = item.get("amountSpent") or item.get("totalSpentV2") or {}
    return {
        "brand_id": brand_id,
        "customer_id": _require_id(item, "Customer"),
        "connection_id": connection_id,
        "email": item.get("email"),
        "first_name": item.get("firstName"),
        "last_name": item.get("lastName"),
        "phone": item.get("phone"),
        "orders_count": _count(item.get("numberOfOrders", item.get("ordersCount"))),
        "total_spent": parse_money(spent),
        "currency": spent.get("currencyCode") if isinstance(spent, dict) else None,
        "last_order_id": parse_gid(_obj(item, "lastOrder").get("id")),
        "tags": _tags(item.get("tags")),
        "email_marketing_consent": _obj(item, "emailMarketingConsent").get("marketingState"),
        "sms_marketing_consent": _obj(item, "smsMarketingConsent").get("marketingState"),
        "addresses": item.get("addresses"),
        "default_address": item.get("defaultAddress"),
        "created_at": _timestamp(item.get("createdAt"), "createdAt"),
        "updated_at": _timestamp(item.get("updatedAt"), "updatedAt"),
        "synced_at": synced_at,
    }


def transform_product(item: dict[str, Any], brand_id: str, connection_id: str, synced_at: datetime) -> dict[str, Any]:
    return {
        "brand_id": brand_id,
        "product_id": _require_id(item, "Product"),
        "connection_id": connection_id,
        "title": item.get("title"),
        "handle": item.get("handle"),
        "vendor": item.get("vendor"),
        "product_type": item.get("productType"),
        "status": item.get("status"),
        "tags": _tags(item.get("tags")),
        "total_inventory": _count(item.get("totalInventory")),
        "created_at": _timestamp(item.get("createdAt"), "createdAt"),
        "updated_at": _timestamp(item.get("updatedAt"), "updatedAt"),
        "published_at": _timestamp(item.get("publishedAt"), "publishedAt"),
        "synced_at": synced_at,
    }


def transform_variant(item: dict[str, Any], brand_id: str, connection_id: str, synced_at: datetime) -> dict[str, Any]:
    product_id = parse_gid(item.get("__parentId"))
    if not product_id:
        raise RecordParseError(message="ProductVariant record has no parent product")
    compare_at = item.get("compareAtPrice")
    return {
        "brand_id": brand_id,
        "product_id": product_id,
        "variant_id": _require_id(item, "ProductVariant"),
        "connection_id": connection_id,
        "title": item.get("title"),
        "sku": item.get("sku"),
        "price": parse_money(item.get("price")),
        "compare_at_price": parse_money(compare_at) if compare_at not in (None, "") else None,
        "inventory_quantity": _count(item.get("inventoryQuantity")),
        "synced_at": synced_at,
    }


# REST payloads (recent narrow-range fetch) use snake_case and numeric ids.


def transform_rest_order(order: dict[str, Any], brand_id: str, connection_id: str, synced_at: datetime) -> dict[str, Any]:
    customer = _obj(order, "customer")
    shipping = _obj(order, "shipping_address")
    if order.get("id") in (None, ""):
        raise RecordParseError(message="REST order has no id")
    name = order.get("name")
    line_items = order.get("line_items") or []
    return {
        "brand_id": brand_id,
        "order_id": str(order["id"]),
        "connection_id": connection_id,
        "name": name,
        "order_number": str(order["order_number"]) if order.get("order_number") is not None else None,
        "email": order.get("email"),
        "currency": order.get("currency"),
        "total_price": parse_money(order.get("total_price")),
        "subtotal_price": parse_money(order.get("subtotal_price") or order.get("total_price")),
        "total_tax": parse_money(order.get("total_tax")),
        "total_discounts": parse_money(order.get("total_discounts")),
        "financial_status": order.get("financial_status"),
        "fulfillment_status": order.get("fulfillment_status"),
        "customer_id": str(customer["id"]) if customer.get("id") is not None else None,
        "customer_email": customer.get("email") or order.get("email"),
        "customer_first_name": customer.get("first_name"),
        "customer_last_name": customer.get("last_name"),
        "tags": order.get("tags") or None,
        "note": order.get("note"),
        "shipping_city": shipping.get("city"),
        "shipping_province": shipping.get("province"),
        "shipping_country": shipping.get("country"),
        "shipping_country_code": shipping.get("country_code"),
        "line_items_count": len(line_items),
        "created_at": _timestamp(order.get("created_at"), "created_at"),
        "updated_at": _timestamp(order.get("updated_at"), "updated_at"),
        "processed_at": _timestamp(order.get("processed_at"), "processed_at"),
        "synced_at": synced_at,
    }


def transform_rest_line_items(
    order: dict[str, Any], brand_id: str, connection_id: str, synced_at: datetime
) -> list[dict[str, Any]]:
    order_id = str(order["id"])
    rows: list[dict[str, Any]] = []
    for line in order.get("line_items") or []:
        if not isinstance(line, dict) or line.get("id") in (None, ""):
            continue
        quantity = _count(line.get("quantity"))
        rows.append(
            {
                "brand_id": brand_id,
                "order_id": order_id,
                "line_item_id": str(line["id"]),
                "connection_id": connection_id,
                "name": line.get("name"),
                "title": line.get("title"),
                "quantity": quantity,
                "price": round(parse_money(line.get("price")) * quantity, 2),
                "total_discount": parse_money(line.get("total_discount")),
                "sku": line.get("sku") or None,
                "product_id": str(line["product_id"]) if line.get("product_id") is not None else None,
                "variant_id": str(line["variant_id"]) if line.get("variant_id") is not None else None,
                "variant_title": line.get("variant_title"),
                "vendor": line.get("vendor"),
                "requires_shipping": line.get("requires_shipping"),
                "taxable": line.get("taxable"),
                "fulfillment_status": line.get("fulfillment_status"),
                "synced_at": synced_at,
            }
        )
    return rows
