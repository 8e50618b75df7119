"""GraphQL documents for bulk exports."""

from __future__ import annotations

from storesync.jobs.types import BulkEntity

_MONEY = "shopMoney { amount currencyCode }"

_ORDERS_SELECTION = f"""
edges {{
  node {{
    __typename
    id
    name
    email
    createdAt
    updatedAt
    processedAt
    currencyCode
    totalPriceSet {{ {_MONEY} }}
    subtotalPriceSet {{ {_MONEY} }}
    totalTaxSet {{ {_MONEY} }}
    totalDiscountsSet {{ {_MONEY} }}
    displayFinancialStatus
    displayFulfillmentStatus
    tags
    note
    customer {{ id email firstName lastName }}
    shippingAddress {{ city province country countryCodeV2 }}
    lineItems {{
      edges {{
        node {{
          __typename
          id
          name
          title
          quantity
          originalTotalSet {{ {_MONEY} }}
          discountedTotalSet {{ {_MONEY} }}
          variant {{ id title sku product {{ id vendor }} }}
          vendor
          requiresShipping
          taxable
        }}
      }}
    }}
  }}
}}
"""

_ADDRESS = "id firstName lastName company address1 address2 city province provinceCode country countryCodeV2 zip phone"

_CUSTOMERS_SELECTION = f"""
edges {{
  node {{
    __typename
    id
    email
    firstName
    lastName
    phone
    createdAt
    updatedAt
    numberOfOrders
    amountSpent {{ amount currencyCode }}
    lastOrder {{ id }}
    emailMarketingConsent {{ marketingState }}
    smsMarketingConsent {{ marketingState }}
    tags
    addresses {{ {_ADDRESS} }}
    defaultAddress {{ {_ADDRESS} }}
  }}
}}
"""

_PRODUCTS_SELECTION = """
edges {
  node {
    __typename
    id
    title
    handle
    vendor
    productType
    status
    tags
    totalInventory
    createdAt
    updatedAt
    publishedAt
    variants {
      edges {
        node {
          __typename
          id
          title
          sku
          price
          compareAtPrice
          inventoryQuantity
        }
      }
    }
  }
}
"""

_SELECTIONS = {
    BulkEntity.ORDERS: ("orders", _ORDERS_SELECTION),
    BulkEntity.CUSTOMERS: ("customers", _CUSTOMERS_SELECTION),
    BulkEntity.PRODUCTS: ("products", _PRODUCTS_SELECTION),
}


def search_filter(since_date: str, until_date: str | None = None) -> str:
    """Platform search syntax selecting records created in [since, until)."""
    parts = [f"created_at:>={since_date}"]
    if until_date:
        parts.append(f"created_at:<{until_date}")
    return " AND ".join(parts)


def build_bulk_query(entity: BulkEntity, *, since_date: str, until_date: str | None = None) -> str:
    """The inner query handed to `bulkOperationRunQuery`."""
    root, selection = _SELECTIONS[BulkEntity(entity)]
    query_filter = search_filter(since_date, until_date).replace('"', '\\"')
    return f'{{ {root}(query: "{query_filter}") {{ {selection} }} }}'


RUN_BULK_QUERY = """
mutation RunBulkQuery($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status createdAt }
    userErrors { field message }
  }
}
"""

_HANDLE_FIELDS = "id status errorCode createdAt completedAt objectCount url partialDataUrl"

CURRENT_BULK_OPERATION = f"""
query CurrentBulkOperation {{
  currentBulkOperation {{ {_HANDLE_FIELDS} }}
}}
"""

BULK_OPERATION_BY_ID = f"""
query BulkOperationById($id: ID!) {{
  node(id: $id) {{
    ... on BulkOperation {{ {_HANDLE_FIELDS} }}
  }}
}}
"""

CANCEL_BULK_OPERATION = """
mutation CancelBulkOperation($id: ID!) {
  bulkOperationCancel(id: $id) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""
