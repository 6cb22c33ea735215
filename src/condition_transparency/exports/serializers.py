"""
Export dataset serialization.

JSON carries the whole dataset; CSV flattens the summary to one row per
token condition.
"""

from __future__ import annotations

import csv
import io
import json
from typing import Any

from ..models import ExportFormat

CSV_HEADER = ["Token", "Condition", "Urgency", "Rounds Remaining", "Summary"]


def serialize_dataset(dataset: dict[str, Any], fmt: ExportFormat) -> bytes:
    if fmt == ExportFormat.CSV:
        return _to_csv(dataset)
    return json.dumps(dataset, indent=2, sort_keys=True).encode("utf-8")


def _to_csv(dataset: dict[str, Any]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for token in dataset.get("summary", {}).get("entries", []):
        for condition in token.get("conditions", []):
            rounds = condition.get("rounds_remaining")
            writer.writerow([
                token.get("token_name", ""),
                condition.get("label", condition.get("key", "")),
                condition.get("urgency", ""),
                "" if rounds is None else rounds,
                condition.get("summary_text", ""),
            ])
    return buffer.getvalue().encode("utf-8")


__all__ = ["CSV_HEADER", "serialize_dataset"]
