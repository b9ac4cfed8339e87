"""GraphQL documents and search strings for the orders endpoint."""

from __future__ import annotations

from datetime import datetime, timezone

MONEY = "shopMoney { amount currencyCode }"

TRANSACTION_FIELDS = f"""
  id
  kind
  status
  processedAt
  amountSet {{ {MONEY} }}
"""

ORDERS_QUERY = f"""
query Orders($first: Int!, $after: String, $query: String) {{
  orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT) {{
    pageInfo {{ hasNextPage endCursor }}
    edges {{
      node {{
        id
        legacyResourceId
        name
        createdAt
        processedAt
        updatedAt
        cancelledAt
        test
        currencyCode
        totalDiscountsSet {{ {MONEY} }}
        customer {{ id numberOfOrders }}
        lineItems(first: 250) {{
          edges {{
            node {{
              id
              quantity
              originalUnitPriceSet {{ {MONEY} }}
              discountAllocations {{ allocatedAmountSet {{ {MONEY} }} }}
              taxLines {{ priceSet {{ {MONEY} }} }}
              variant {{ id }}
              product {{ id }}
            }}
          }}
        }}
        refunds {{
          id
          legacyResourceId
          createdAt
          totalRefundedSet {{ {MONEY} }}
          refundLineItems(first: 250) {{
            edges {{
              node {{
                quantity
                subtotalSet {{ {MONEY} }}
                totalTaxSet {{ {MONEY} }}
                lineItem {{ id originalUnitPriceSet {{ {MONEY} }} }}
              }}
            }}
          }}
          orderAdjustments(first: 50) {{
            edges {{
              node {{
                reason
                amountSet {{ {MONEY} }}
                taxAmountSet {{ {MONEY} }}
              }}
            }}
          }}
          transactions(first: 50) {{
            edges {{ node {{ {TRANSACTION_FIELDS} }} }}
          }}
        }}
        transactions {{ {TRANSACTION_FIELDS} }}
      }}
    }}
  }}
}}
"""


def _format_instant(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_search_query(field: str, start: datetime, end: datetime | None = None) -> str:
    """Build an orders search string bounding ``field`` by UTC instants.

    Args:
        field: Search field, "created_at", "processed_at" or "updated_at".
        start: Lower bound (inclusive).
        end: Upper bound (inclusive), or None for open-ended.

    Returns:
        Search string for the ``query`` argument of ``orders``.

    Raises:
        ValueError: If field is not a supported timestamp field.

    Examples:
        >>> from datetime import datetime, timezone
        >>> build_search_query("created_at", datetime(2024, 3, 1, tzinfo=timezone.utc))
        "created_at:>='2024-03-01T00:00:00Z'"
    """
    if field not in ("created_at", "processed_at", "updated_at"):
        raise ValueError(f"Invalid search field '{field}'")
    parts = [f"{field}:>='{_format_instant(start)}'"]
    if end is not None:
        parts.append(f"{field}:<='{_format_instant(end)}'")
    return " AND ".join(parts)
