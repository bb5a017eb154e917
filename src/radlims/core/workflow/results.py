"""Nuclide result capture."""

from collections.abc import Iterable
from typing import Any

from radlims.core.workflow.payloads import ResultRow


def normalize_result_row(row: ResultRow) -> ResultRow:
    """Apply the storage rules to one row.

    A below-detection-limit row keeps its concentration as the less-than
    bound and never carries an uncertainty, even one left over from an
    earlier edit of the same row.
    """
    if row.below_detection_limit and row.uncertainty is not None:
        return row.model_copy(update={"uncertainty": None})
    return row


def normalize_result_rows(rows: Iterable[ResultRow]) -> list[ResultRow]:
    """Normalize every row of a result set."""
    return [normalize_result_row(row) for row in rows]


def rows_to_document(rows: Iterable[ResultRow]) -> list[dict[str, Any]]:
    """Serialize normalized rows for JSON storage."""
    return [row.model_dump(mode="json") for row in normalize_result_rows(rows)]
