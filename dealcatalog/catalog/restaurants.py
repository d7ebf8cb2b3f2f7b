from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from ..errors import CatalogError, ErrorKind
from ..store.client import Store
from .categories import CategoryService
from .geo import RESTAURANT_TABLE, build_restaurant_query
from .models import (
    IMMUTABLE_FIELDS,
    Restaurant,
    RestaurantChanges,
    RestaurantOut,
    build_restaurant,
    describe_validation_error,
    validate_changes,
)

logger = logging.getLogger(__name__)


@dataclass
class BulkInsertResult:
    inserted_count: int
    error: CatalogError | None = None


class RestaurantService:
    def __init__(self, store: Store, categories: CategoryService | None = None) -> None:
        self.store = store
        self.categories = categories or CategoryService(store)

    def _table(self):
        return self.store.client.table(RESTAURANT_TABLE)

    # ── Reads ────────────────────────────────────────────────────────────

    def list_restaurants(self, lat: Any = None, lon: Any = None) -> list[Restaurant]:
        query = build_restaurant_query(lat, lon)
        logger.info(
            "Fetching restaurants%s", " with distance calculation" if query.includes_distance else ""
        )
        response = self.store.run(
            query.to_request(self.store.client).execute, label="Restaurant list query"
        )
        return [Restaurant.from_row(row) for row in response.data or []]

    def find_by_id(self, restaurant_id: int) -> Restaurant | None:
        response = self.store.run(
            self._table().select("*").eq("id", restaurant_id).limit(1).execute,
            label="Restaurant lookup",
        )
        rows = response.data or []
        return Restaurant.from_row(rows[0]) if rows else None

    def list_with_categories(self) -> list[RestaurantOut]:
        restaurants = self.list_restaurants()
        names = self.categories.names_by_restaurant()
        return [
            RestaurantOut(**r.model_dump(), categories=names.get(r.id, []))
            for r in restaurants
        ]

    def get_with_categories(self, restaurant_id: int) -> RestaurantOut | None:
        restaurant = self.find_by_id(restaurant_id)
        if restaurant is None:
            return None
        return self._with_categories(restaurant)

    def _with_categories(self, restaurant: Restaurant) -> RestaurantOut:
        return RestaurantOut(
            **restaurant.model_dump(),
            categories=self.categories.names_for_restaurant(restaurant.id),
        )

    # ── Writes ───────────────────────────────────────────────────────────

    def create(self, data: Mapping[str, Any]) -> Restaurant:
        restaurant = build_restaurant(
            {
                key: value
                for key, value in data.items()
                if key not in IMMUTABLE_FIELDS and key != "distance"
            }
        )
        response = self.store.run(
            self._table().insert(restaurant.to_record()).execute, label="Restaurant insert"
        )
        rows = response.data or []
        if not rows:
            raise CatalogError(ErrorKind.internal, "Restaurant insert returned no row.")
        return Restaurant.from_row(rows[0])

    def update(self, restaurant_id: int, data: Mapping[str, Any]) -> RestaurantOut | None:
        """Apply a partial update; ``None`` means no restaurant matched.

        A ``categories`` list, when present, replaces the restaurant's whole
        category set whether or not any scalar field changed.
        """
        payload = dict(data)
        categories = payload.pop("categories", None)
        has_categories = "categories" in data and categories is not None
        if has_categories and (
            not isinstance(categories, list) or not all(isinstance(c, str) for c in categories)
        ):
            raise CatalogError(ErrorKind.validation, "categories must be a list of strings.")

        fields = validate_changes(payload, RestaurantChanges, ("name", "address"), "restaurant")
        if not fields and not has_categories:
            raise CatalogError(ErrorKind.validation, "No valid fields provided for update.")

        if fields:
            response = self.store.run(
                self._table().update(fields).eq("id", restaurant_id).execute,
                label="Restaurant update",
            )
            rows = response.data or []
            if not rows:
                logger.warning("No restaurant found with id %s to update", restaurant_id)
                return None
            restaurant = Restaurant.from_row(rows[0])
        else:
            restaurant = self.find_by_id(restaurant_id)
            if restaurant is None:
                logger.warning("No restaurant found with id %s when updating categories", restaurant_id)
                return None

        if has_categories:
            self.categories.replace_categories_for_restaurant(restaurant_id, categories)
        return self._with_categories(restaurant)

    def delete(self, restaurant_id: int) -> bool:
        try:
            response = self.store.run(
                self._table().delete().eq("id", restaurant_id).execute,
                label="Restaurant delete",
            )
        except CatalogError as exc:
            if exc.kind is ErrorKind.reference_violation:
                raise CatalogError(
                    ErrorKind.reference_violation,
                    f"Cannot delete restaurant {restaurant_id} because it still has "
                    "associated deals or categories.",
                ) from exc
            raise
        deleted = len(response.data or [])
        if not deleted:
            logger.warning("No restaurant found with id %s to delete", restaurant_id)
        return deleted > 0

    def bulk_insert(self, rows: Sequence[Mapping[str, Any]]) -> BulkInsertResult:
        """Insert ``rows`` in one batch; store failures are returned, not raised."""
        if not rows:
            return BulkInsertResult(
                0, CatalogError(ErrorKind.bad_request, "No restaurant data provided for bulk insert.")
            )

        records = []
        for index, row in enumerate(rows, start=1):
            try:
                records.append(Restaurant.model_validate(dict(row)).to_record())
            except ValidationError as exc:
                return BulkInsertResult(
                    0,
                    CatalogError(
                        ErrorKind.validation,
                        f"Invalid restaurant data in row {index}: {describe_validation_error(exc)}",
                    ),
                )
        try:
            response = self.store.run(self._table().insert(records).execute, label="Bulk insert")
        except CatalogError as exc:
            logger.error("Bulk insert of %d restaurants failed: %s", len(records), exc.message)
            return BulkInsertResult(0, exc)

        inserted = len(response.data or [])
        logger.info("Bulk inserted %d restaurants", inserted)
        return BulkInsertResult(inserted)
