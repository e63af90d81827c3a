"""Priced line items for a subscription.

Only two kinds of line item exist: the plan charge and the extra-seat
add-on.  Items are built through :func:`build_line_items` and carry their
role in ``metadata.line_item_role`` so the reconciler can count seats
without inferring anything from price identity.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


ROLE_METADATA_KEY = "line_item_role"


class LineItemKind(str, Enum):
    PLAN_CHARGE = "plan_charge"
    EXTRA_SEAT = "extra_seat"


@dataclass(frozen=True)
class LineItem:
    kind: LineItemKind
    price_id: str
    quantity: int

    def to_gateway_params(self) -> dict[str, Any]:
        """Render as a Stripe ``items[]`` entry."""
        return {
            "price": self.price_id,
            "quantity": self.quantity,
            "metadata": {ROLE_METADATA_KEY: self.kind.value},
        }


def build_line_items(
    plan_price_id: str,
    seat_price_id: str | None,
    extra_users_count: int,
) -> list[LineItem]:
    """Build the item list for a new subscription.

    Parameters
    ----------
    plan_price_id:
        Price id of the chosen plan and billing cycle.
    seat_price_id:
        Price id of the extra-seat add-on for the same cycle.  Only needed
        when ``extra_users_count`` is positive.
    extra_users_count:
        Number of seats on top of those included in the plan.

    Returns
    -------
    list[LineItem]
        Exactly one plan line, plus one extra-seat line when
        ``extra_users_count > 0``.
    """
    if extra_users_count < 0:
        raise ValueError(f"extra_users_count must be >= 0, got {extra_users_count}")

    items = [LineItem(LineItemKind.PLAN_CHARGE, plan_price_id, 1)]
    if extra_users_count > 0:
        if not seat_price_id:
            raise ValueError("An extra-seat price id is required when extra_users_count > 0")
        items.append(LineItem(LineItemKind.EXTRA_SEAT, seat_price_id, extra_users_count))
    return items


def _item_role(item: Mapping[str, Any]) -> str | None:
    role = (item.get("metadata") or {}).get(ROLE_METADATA_KEY)
    if role:
        return str(role)
    price = item.get("price") or {}
    if isinstance(price, Mapping):
        role = (price.get("metadata") or {}).get(ROLE_METADATA_KEY)
    return str(role) if role else None


def _item_price_id(item: Mapping[str, Any]) -> str:
    price = item.get("price") or {}
    if isinstance(price, Mapping):
        return str(price.get("id") or "")
    return str(price)


def count_extra_seats(
    items: Iterable[Mapping[str, Any]],
    seat_price_ids: Iterable[str] = (),
) -> int:
    """Sum the quantity of extra-seat items on a gateway subscription.

    An item counts when its role tag is ``extra_seat``.  Items without a role
    tag (created outside this engine, e.g. from the Stripe dashboard) count
    when their price id exactly matches one of *seat_price_ids*.
    """
    known_seat_prices = frozenset(seat_price_ids)
    total = 0
    for item in items:
        role = _item_role(item)
        if role is not None:
            is_seat = role == LineItemKind.EXTRA_SEAT.value
        else:
            is_seat = _item_price_id(item) in known_seat_prices
        if is_seat:
            total += int(item.get("quantity") or 0)
    return total


def subscription_items(subscription: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Return ``subscription.items.data`` (empty list if absent)."""
    items = subscription.get("items") or {}
    if isinstance(items, Mapping):
        return list(items.get("data") or [])
    return []
