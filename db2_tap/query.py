from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from db2_tap.errors import QueryExecutionError
from db2_tap.logging_utils import TRACE_LEVEL
from db2_tap.normalize import is_valid_metric_value, normalize_token, parse_number, to_text

ROW = "row"
SET = "set"

SEPARATOR = "/"

# Leading identity columns understood for "set" categories.
TBSP_COLUMN_NAME = "TBSP_NAME"
BP_COLUMN_NAME = "BP_NAME"
HADR_COLUMN_NAME = "STANDBY_ID"
IDENTITY_COLUMNS = frozenset({TBSP_COLUMN_NAME, BP_COLUMN_NAME, HADR_COLUMN_NAME})

logger = logging.getLogger(__name__)


def metric_key(category: str, column: str) -> str:
    return f"{category}{SEPARATOR}{column.lower()}"


def _column_names(cursor: Any) -> list[str]:
    description = cursor.description or ()
    return [str(column[0]) for column in description]


def _collect_values(
    results: dict[str, float],
    category: str,
    columns: Sequence[str],
    values: Iterable[Any],
) -> None:
    for column, raw in zip(columns, values):
        value = normalize_token(to_text(raw))
        key = metric_key(category, column)
        if is_valid_metric_value(value):
            results[key] = parse_number(value)
        else:
            logger.log(TRACE_LEVEL, "Dropping non-numeric value %r for %s", raw, key)


def _shape_row(cursor: Any, category: str, columns: list[str]) -> dict[str, float]:
    results: dict[str, float] = {}
    row = cursor.fetchone()
    if row is not None:
        _collect_values(results, category, columns, row)
    return results


def _shape_set(cursor: Any, category: str, columns: list[str]) -> dict[str, float]:
    results: dict[str, float] = {}
    if not columns or columns[0].upper() not in IDENTITY_COLUMNS:
        logger.debug(
            "Category %s: first column %s is not a known identity column, skipping",
            category,
            columns[0] if columns else None,
        )
        return results
    for row in cursor.fetchall():
        # Each tablespace/bufferpool/standby gets its own key space, e.g. bufferpool_IBMDEFAULTBP
        entity_category = f"{category}_{to_text(row[0])}"
        _collect_values(results, entity_category, columns[1:], row[1:])
    return results


def _execute(connection: Any, category: str, sql: str, result: str) -> dict[str, float]:
    cursor = None
    try:
        cursor = connection.cursor()
        cursor.execute(sql)
        columns = _column_names(cursor)
        if result == ROW:
            return _shape_row(cursor, category, columns)
        if result == SET:
            return _shape_set(cursor, category, columns)
        logger.warning("Category %s has unsupported result type %r", category, result)
        return {}
    except Exception as exc:
        raise QueryExecutionError(category, f"An SQL error occurred running '{sql}': {exc}") from exc
    finally:
        if cursor is not None:
            try:
                cursor.close()
            except Exception as exc:
                logger.debug("Error closing cursor for category %s: %s", category, exc)


def run_sql(connection: Any, category: str, sql: str, result: str) -> dict[str, float]:
    """Run one category probe and flatten its result into metric values.

    ``row`` categories read the first row only and key every column as
    ``category/column``. ``set`` categories expand every row into
    ``category_<identity>/column``, where the identity is the first column.
    A failing statement yields an empty mapping so that the remaining
    categories of the poll cycle still report.
    """
    logger.debug("Running SQL statement for %s: %s", category, sql)
    try:
        return _execute(connection, category, sql, result)
    except QueryExecutionError as exc:
        logger.error("%s", exc)
        return {}
