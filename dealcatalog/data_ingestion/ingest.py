from __future__ import annotations

import json
import logging
import math
from typing import Any, BinaryIO, Iterable, Iterator, Mapping, Protocol

import pandas as pd
from pydantic import ValidationError

from ..catalog.models import IngestionReport, Restaurant, RowError, describe_validation_error
from ..catalog.restaurants import RestaurantService
from ..errors import CatalogError, ErrorKind
from ..logging_setup import log_context
from .config import DEFAULT_INGESTION_CONFIG, IngestionConfig

logger = logging.getLogger(__name__)


class Upload(Protocol):
    content_type: str | None
    filename: str | None
    file: BinaryIO


class RowRejected(ValueError):
    pass


class RaggedRow(list):
    """Raw fields of a CSV record that carries more values than its header."""

    def __init__(self, fields: Iterable[Any], expected: int) -> None:
        super().__init__(fields)
        self.expected = expected


def _media_type(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def _drain(stream: BinaryIO, chunk_bytes: int) -> None:
    while stream.read(chunk_bytes):
        pass


# ── Row validation ───────────────────────────────────────────────────────


def _clean_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_count(value: Any) -> int:
    number = _to_float(value)
    if number is None or number < 0:
        return 0
    return int(number)


def _to_coordinate(value: Any, limit: float) -> float | None:
    number = _to_float(value)
    if number is None or not -limit <= number <= limit:
        return None
    return number


def clean_row(raw: Any, config: IngestionConfig = DEFAULT_INGESTION_CONFIG) -> dict[str, Any]:
    """Validate one uploaded row and coerce it into an insertable restaurant record.

    Raises ``RowRejected`` when a required field is missing or empty, or when
    a field has the wrong type for the Restaurant schema.  Bad numeric values
    never reject a row: ratings and review counts fall back to 0, coordinates
    to ``None``.
    """
    if isinstance(raw, RaggedRow):
        raise RowRejected(f"Expected {raw.expected} fields, found {len(raw)}")
    if not isinstance(raw, Mapping):
        raise RowRejected("Row must be an object of restaurant fields")

    row = {str(key).strip(): _clean_value(value) for key, value in raw.items()}
    missing = [name for name in config.required_fields if row.get(name) is None]
    if missing:
        raise RowRejected(f"Missing required field ({' or '.join(config.required_fields)})")

    row["average_rating"] = _to_float(row.get("average_rating")) or 0.0
    row["reviews_count"] = _to_count(row.get("reviews_count"))
    row["latitude"] = _to_coordinate(row.get("latitude"), 90.0)
    row["longitude"] = _to_coordinate(row.get("longitude"), 180.0)

    try:
        restaurant = Restaurant.model_validate(row)
    except ValidationError as exc:
        raise RowRejected(f"Invalid restaurant data: {describe_validation_error(exc)}") from exc
    return restaurant.to_record()


# ── Parsers ──────────────────────────────────────────────────────────────


def _present_fields(values: tuple[Any, ...]) -> list[Any]:
    # Fields past the end of a record come back as empty padding; trailing
    # empty fields are dropped with them.
    count = len(values)
    while count and _clean_value(values[count - 1]) is None:
        count -= 1
    return list(values[:count])


def _iter_csv_rows(stream: BinaryIO, config: IngestionConfig) -> Iterator[dict[str, Any] | RaggedRow]:
    """Yield one mapping per CSV data row, keyed by the trimmed header names.

    Records are read positionally against ``csv_max_fields`` columns so that a
    record wider than the header surfaces as a ``RaggedRow`` in its own place
    instead of failing the whole file.
    """
    reader = pd.read_csv(
        stream,
        header=None,
        names=list(range(config.csv_max_fields)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        chunksize=config.csv_chunk_size,
        encoding=config.encoding,
    )
    header: list[str] | None = None
    with reader:
        for chunk in reader:
            for values in chunk.itertuples(index=False, name=None):
                fields = _present_fields(values)
                if header is None:
                    header = [str(name).strip() for name in fields]
                elif len(fields) > len(header):
                    yield RaggedRow(fields, expected=len(header))
                else:
                    yield dict(zip(header, values))
    if header is None:
        raise pd.errors.EmptyDataError("No columns to parse from file")


def _load_json_rows(stream: BinaryIO) -> list[Any]:
    payload = json.loads(stream.read())
    if not isinstance(payload, list):
        raise CatalogError(
            ErrorKind.bad_request, "JSON file must contain an array of restaurant objects."
        )
    return payload


def _row_context(raw: Any) -> Any:
    if isinstance(raw, Mapping):
        return {key: _clean_value(value) for key, value in raw.items()}
    if isinstance(raw, list):
        return list(raw)
    return raw


def _collect(
    rows: Iterable[Any], config: IngestionConfig
) -> tuple[list[dict[str, Any]], list[RowError], int]:
    batch: list[dict[str, Any]] = []
    errors: list[RowError] = []
    total = 0
    # Row numbers are 1-based positions among data rows (CSV header excluded).
    for total, raw in enumerate(rows, start=1):
        try:
            batch.append(clean_row(raw, config))
        except RowRejected as exc:
            errors.append(RowError(row=total, message=str(exc), data=_row_context(raw)))
    return batch, errors, total


# ── Pipeline ─────────────────────────────────────────────────────────────


def ingest_upload(
    upload: Upload,
    service: RestaurantService,
    config: IngestionConfig = DEFAULT_INGESTION_CONFIG,
    *,
    uploaded_by: str | None = None,
) -> IngestionReport:
    """
    Parse an uploaded CSV or JSON file and bulk insert its valid restaurants.

    Steps:
    - Reject unsupported media types (after draining the upload).
    - Parse rows in input order, validating each one independently.
    - Insert every valid row in a single batch.
    - Report row-level and store-level failures together.

    The report's ``attempted_insert`` is false when no row survived
    validation; callers treat that as a client error.
    """
    token = log_context.set(f"upload:{upload.filename or '-'}")
    try:
        return _ingest(upload, service, config, uploaded_by)
    finally:
        log_context.reset(token)


def _ingest(
    upload: Upload,
    service: RestaurantService,
    config: IngestionConfig,
    uploaded_by: str | None,
) -> IngestionReport:
    media_type = _media_type(upload.content_type)
    if media_type not in config.allowed_media_types:
        _drain(upload.file, config.drain_chunk_bytes)
        raise CatalogError(
            ErrorKind.unsupported_media_type, "Invalid file type. Only CSV or JSON allowed."
        )

    logger.info(
        "Processing bulk upload file %s (%s) by %s",
        upload.filename, media_type, uploaded_by or "unknown user",
    )

    try:
        if media_type == config.csv_media_type:
            rows: Iterable[Any] = _iter_csv_rows(upload.file, config)
        else:
            rows = _load_json_rows(upload.file)
        batch, errors, total = _collect(rows, config)
    except CatalogError:
        _drain(upload.file, config.drain_chunk_bytes)
        raise
    except pd.errors.EmptyDataError as exc:
        raise CatalogError(ErrorKind.bad_request, "The uploaded file is empty.") from exc
    except (pd.errors.ParserError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        _drain(upload.file, config.drain_chunk_bytes)
        raise CatalogError(
            ErrorKind.bad_request, f"Failed to parse uploaded file: {exc}"
        ) from exc

    if not batch:
        logger.info("Bulk upload had no valid rows; %d validation errors", len(errors))
        return IngestionReport(
            message=f"No valid restaurant data found in the file. Errors: {len(errors)}.",
            success_count=0,
            error_count=len(errors),
            errors=errors,
            total_rows=total,
            attempted_insert=False,
        )

    logger.info("Attempting to bulk insert %d valid restaurants", len(batch))
    result = service.bulk_insert(batch)
    if result.error is not None:
        errors.append(
            RowError(row="N/A", message=f"Database bulk insert failed: {result.error.message}")
        )

    logger.info(
        "Bulk upload result: %d inserted, %d validation/insert errors",
        result.inserted_count, len(errors),
    )
    return IngestionReport(
        message=(
            f"Processed {total} rows. Successfully inserted: {result.inserted_count}. "
            f"Errors: {len(errors)}."
        ),
        success_count=result.inserted_count,
        error_count=len(errors),
        errors=errors,
        total_rows=total,
        attempted_insert=True,
    )
