from __future__ import annotations

import logging
from typing import Any, Mapping

from ..errors import CatalogError, ErrorKind
from ..store.client import Store
from .models import (
    DEAL_COLUMNS,
    IMMUTABLE_FIELDS,
    Deal,
    DealChanges,
    build_deal,
    validate_changes,
)

logger = logging.getLogger(__name__)

DEAL_TABLE = "Deals"


def _parse_restaurant_id(restaurant_id: Any) -> int:
    try:
        parsed = int(restaurant_id)
    except (TypeError, ValueError):
        parsed = 0
    if isinstance(restaurant_id, bool) or parsed <= 0:
        raise CatalogError(ErrorKind.validation, f"Invalid Restaurant ID format: {restaurant_id}")
    return parsed


def _missing_restaurant(restaurant_id: Any, action: str) -> CatalogError:
    return CatalogError(
        ErrorKind.reference_violation,
        f"Cannot {action} deal: Restaurant with ID {restaurant_id} does not exist.",
    )


class DealService:
    def __init__(self, store: Store) -> None:
        self.store = store

    def _table(self):
        return self.store.client.table(DEAL_TABLE)

    def list_deals(self) -> list[Deal]:
        response = self.store.run(
            self._table().select("*").order("created_at", desc=True).execute,
            label="Deal list query",
        )
        return [Deal.from_row(row) for row in response.data or []]

    def list_for_restaurant(self, restaurant_id: Any) -> list[Deal]:
        parsed = _parse_restaurant_id(restaurant_id)
        response = self.store.run(
            self._table().select("*").eq("restaurant_id", parsed).execute,
            label=f"Deal query for restaurant {parsed}",
        )
        deals = [Deal.from_row(row) for row in response.data or []]
        logger.info("Found %d deals for restaurant %s", len(deals), parsed)
        return deals

    def find_by_id(self, deal_id: int) -> Deal | None:
        response = self.store.run(
            self._table().select("*").eq("id", deal_id).limit(1).execute,
            label="Deal lookup",
        )
        rows = response.data or []
        return Deal.from_row(rows[0]) if rows else None

    def create(self, data: Mapping[str, Any]) -> Deal:
        deal = build_deal({key: value for key, value in data.items() if key not in IMMUTABLE_FIELDS})
        try:
            response = self.store.run(
                self._table().insert(deal.to_record()).execute, label="Deal insert"
            )
        except CatalogError as exc:
            if exc.kind is ErrorKind.reference_violation:
                raise _missing_restaurant(deal.restaurant_id, "create") from exc
            raise
        rows = response.data or []
        if not rows:
            raise CatalogError(ErrorKind.internal, "Deal insert returned no row.")
        return Deal.from_row(rows[0])

    def update(self, deal_id: int, data: Mapping[str, Any]) -> Deal | None:
        fields = validate_changes(data, DealChanges, DEAL_COLUMNS, "deal")
        if not fields:
            raise CatalogError(ErrorKind.validation, "No valid fields provided for update.")
        try:
            response = self.store.run(
                self._table().update(fields).eq("id", deal_id).execute, label="Deal update"
            )
        except CatalogError as exc:
            if exc.kind is ErrorKind.reference_violation:
                raise _missing_restaurant(fields.get("restaurant_id"), "update") from exc
            raise
        rows = response.data or []
        if not rows:
            logger.warning("No deal found with id %s to update", deal_id)
            return None
        return Deal.from_row(rows[0])

    def delete(self, deal_id: int) -> bool:
        response = self.store.run(
            self._table().delete().eq("id", deal_id).execute, label="Deal delete"
        )
        deleted = len(response.data or [])
        if not deleted:
            logger.warning("No deal found with id %s to delete", deal_id)
        return deleted > 0

