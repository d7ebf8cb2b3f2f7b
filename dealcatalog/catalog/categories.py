from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from ..store.client import Store
from .models import RestaurantCategory

logger = logging.getLogger(__name__)

CATEGORY_TABLE = "Restaurant_Categories"


class CategoryService:
    def __init__(self, store: Store) -> None:
        self.store = store

    def _table(self):
        return self.store.client.table(CATEGORY_TABLE)

    def list_categories(self) -> list[RestaurantCategory]:
        response = self.store.run(
            self._table().select("*").execute, label="Category list query"
        )
        return [RestaurantCategory.from_row(row) for row in response.data or []]

    def find_by_id(self, category_id: int) -> RestaurantCategory | None:
        response = self.store.run(
            self._table().select("*").eq("id", category_id).limit(1).execute,
            label="Category lookup",
        )
        rows = response.data or []
        return RestaurantCategory.from_row(rows[0]) if rows else None

    def list_for_restaurant(self, restaurant_id: int) -> list[RestaurantCategory]:
        response = self.store.run(
            self._table().select("*").eq("restaurant_id", restaurant_id).execute,
            label="Restaurant category query",
        )
        return [RestaurantCategory.from_row(row) for row in response.data or []]

    def names_for_restaurant(self, restaurant_id: int) -> list[str]:
        return [c.category_name for c in self.list_for_restaurant(restaurant_id) if c.category_name]

    def names_by_restaurant(self) -> dict[int, list[str]]:
        """Group every category name by its owning restaurant with a single query."""
        response = self.store.run(
            self._table().select("restaurant_id, category_name").execute,
            label="Category grouping query",
        )
        grouped: dict[int, list[str]] = defaultdict(list)
        for row in response.data or []:
            if row.get("category_name"):
                grouped[row["restaurant_id"]].append(row["category_name"])
        return dict(grouped)

    def replace_categories_for_restaurant(
        self, restaurant_id: int, category_names: Iterable[str]
    ) -> list[RestaurantCategory]:
        """Replace the restaurant's whole category set with ``category_names``.

        The delete and the insert are two separate round trips.  If the insert
        fails the restaurant is left with no categories.
        """
        names = [name.strip() for name in category_names if name and name.strip()]

        self.store.run(
            self._table().delete().eq("restaurant_id", restaurant_id).execute,
            label="Category delete",
        )
        if not names:
            logger.info("Cleared all categories for restaurant %s", restaurant_id)
            return []

        rows = [
            RestaurantCategory(restaurant_id=restaurant_id, category_name=name).to_record()
            for name in names
        ]
        response = self.store.run(self._table().insert(rows).execute, label="Category insert")
        logger.info("Replaced categories for restaurant %s with %d entries", restaurant_id, len(names))
        return [RestaurantCategory.from_row(row) for row in response.data or []]
