"""
Bulk restaurant ingestion package.

Responsibilities:
- Accept a single uploaded CSV or JSON file.
- Validate and normalize every row into the Restaurant schema.
- Insert the valid rows in one batch and report per-row failures.
"""
