from __future__ import annotations

import math
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import CatalogError, ErrorKind
from .geo import round_distance

IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def _populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def normalize_rating(raw: Any) -> float:
    """Map a raw store rating onto the half-point scale: half of the rounded value."""
    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    # Round half up, not to even.
    return math.floor(value + 0.5) / 2


def _coerce_count(raw: Any) -> int:
    try:
        return max(0, int(raw or 0))
    except (TypeError, ValueError):
        return 0


def describe_validation_error(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
    )


def _with_identity(record: dict[str, Any], source: BaseModel) -> dict[str, Any]:
    # id and created_at are assigned by the store unless the caller already has them.
    for key in IMMUTABLE_FIELDS:
        value = getattr(source, key)
        if value is not None:
            record[key] = value
    return record


def _validation_error(exc: ValidationError, what: str) -> CatalogError:
    return CatalogError(ErrorKind.validation, f"Invalid {what}: {describe_validation_error(exc)}")


# ── Restaurant ───────────────────────────────────────────────────────────


RESTAURANT_COLUMNS = (
    "name",
    "logo_url",
    "website_url",
    "reviews_count",
    "average_rating",
    "address",
    "maps_url",
    "latitude",
    "longitude",
)


class Restaurant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    created_at: str | None = None
    name: str | None = None
    logo_url: str | None = None
    website_url: str | None = None
    reviews_count: int = Field(default=0, ge=0)
    average_rating: float = 0.0
    address: str | None = None
    maps_url: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    # Only set when the read asked for it; never persisted.
    distance: float | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Restaurant:
        data = {key: value for key, value in row.items() if value is not None}
        data["reviews_count"] = _coerce_count(row.get("reviews_count"))
        data["average_rating"] = normalize_rating(row.get("average_rating"))
        data["distance"] = round_distance(row.get("distance"))
        return cls.model_validate(data)

    def is_valid(self) -> bool:
        return _populated(self.name) and _populated(self.address)

    def to_record(self) -> dict[str, Any]:
        return _with_identity(self.model_dump(include=set(RESTAURANT_COLUMNS)), self)


class RestaurantOut(Restaurant):
    categories: list[str] = Field(default_factory=list)


class RestaurantChanges(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    logo_url: str | None = None
    website_url: str | None = None
    reviews_count: int | None = Field(default=None, ge=0)
    average_rating: float | None = None
    address: str | None = None
    maps_url: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


def build_restaurant(data: Mapping[str, Any]) -> Restaurant:
    """Return a valid Restaurant built from ``data`` or raise a validation error."""
    try:
        restaurant = Restaurant.model_validate(dict(data))
    except ValidationError as exc:
        raise _validation_error(exc, "restaurant") from exc
    if not restaurant.is_valid():
        raise CatalogError(ErrorKind.validation, "Restaurant requires a name and an address.")
    return restaurant


# ── Deal ─────────────────────────────────────────────────────────────────


DEAL_COLUMNS = ("details", "restaurant_id", "summarized_deal", "price", "restaurant_name")


class Deal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    created_at: str | None = None
    details: str | None = None
    restaurant_id: int | None = None
    summarized_deal: str | None = None
    price: float | str | None = None
    restaurant_name: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Deal:
        return cls.model_validate({key: value for key, value in row.items() if value is not None})

    def is_valid(self) -> bool:
        return all(_populated(getattr(self, column)) for column in DEAL_COLUMNS)

    def to_record(self) -> dict[str, Any]:
        return _with_identity(self.model_dump(include=set(DEAL_COLUMNS)), self)


class DealChanges(BaseModel):
    model_config = ConfigDict(extra="ignore")

    details: str | None = None
    restaurant_id: int | None = None
    summarized_deal: str | None = None
    price: float | str | None = None
    restaurant_name: str | None = None


def build_deal(data: Mapping[str, Any]) -> Deal:
    try:
        deal = Deal.model_validate(dict(data))
    except ValidationError as exc:
        raise _validation_error(exc, "deal") from exc
    if not deal.is_valid():
        raise CatalogError(ErrorKind.validation, "Validation failed: Deal data is incomplete.")
    return deal


# ── RestaurantCategory ───────────────────────────────────────────────────


class RestaurantCategory(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    created_at: str | None = None
    restaurant_id: int | None = None
    category_name: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> RestaurantCategory:
        return cls.model_validate({key: value for key, value in row.items() if value is not None})

    def is_valid(self) -> bool:
        return self.restaurant_id is not None and _populated(self.category_name)

    def to_record(self) -> dict[str, Any]:
        return _with_identity(self.model_dump(include={"restaurant_id", "category_name"}), self)


# ── Update payload validation ────────────────────────────────────────────


def validate_changes(
    data: Mapping[str, Any],
    schema: type[BaseModel],
    required: tuple[str, ...],
    what: str,
) -> dict[str, Any]:
    """Strip immutable keys and validate the remaining mutable fields.

    Returns only the fields the caller actually sent.  Required fields may be
    changed but not blanked.
    """
    changes = {key: value for key, value in data.items() if key not in IMMUTABLE_FIELDS}
    try:
        fields = schema.model_validate(changes).model_dump(exclude_unset=True)
    except ValidationError as exc:
        raise _validation_error(exc, what) from exc
    blanked = [name for name in required if name in fields and not _populated(fields[name])]
    if blanked:
        raise CatalogError(
            ErrorKind.validation, f"Cannot clear required {what} field(s): {', '.join(blanked)}"
        )
    return fields


# ── Identity ─────────────────────────────────────────────────────────────


class RoleProfile(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    app_user_id: int | str
    email: str | None = None
    role_id: int | str | None = None
    role_type: str | None = None


class IdentityContext(BaseModel):
    """Resolved caller attached to an admin request."""

    auth_id: str
    app_id: int | str
    email: str | None = None
    role: str


# ── Bulk upload report ───────────────────────────────────────────────────


class RowError(BaseModel):
    row: int | str
    message: str
    data: Any = None


class IngestionReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    success_count: int = Field(default=0, alias="successCount")
    error_count: int = Field(default=0, alias="errorCount")
    errors: list[RowError] = Field(default_factory=list)
    total_rows: int = Field(default=0, exclude=True)
    attempted_insert: bool = Field(default=False, exclude=True)
