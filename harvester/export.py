"""
Record Export
JSON/CSV export of stored records plus a small field-value summary.
"""

import csv
import json
import logging
from collections import Counter
from pathlib import Path
from typing import Dict, List, Sequence, Union

from .models import DetailRecord

logger = logging.getLogger(__name__)

# Body text limit for CSV cells
_CSV_TEXT_LIMIT = 10000


def export_json(records: Sequence[DetailRecord], path: Union[str, Path]) -> Path:
    """Write records as a JSON array; returns the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump([r.to_dict() for r in records], f, ensure_ascii=False, indent=2)
    logger.info(f"Exported {len(records)} record(s) to {path}")
    return path


def export_csv(records: Sequence[DetailRecord], path: Union[str, Path]) -> Path:
    """Write records as CSV, one ``field:<label>`` column per structured field."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    rows = []
    for record in records:
        row = record.to_flat_dict()
        for key in ("raw_text", "body_text"):
            if row.get(key):
                row[key] = row[key][:_CSV_TEXT_LIMIT]
        rows.append(row)

    columns: List[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    with path.open("w", encoding="utf-8-sig", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)
    logger.info(f"Exported {len(records)} record(s) to {path}")
    return path


def summarize_records(records: Sequence[DetailRecord], top: int = 5) -> Dict[str, object]:
    """
    Counts for a run summary: totals, provenance split, recommended count,
    and the most common values of every structured field.
    """
    field_counts: Dict[str, Counter] = {}
    for record in records:
        for label, value in record.fields.items():
            field_counts.setdefault(label, Counter())[value] += 1

    return {
        "total": len(records),
        "by_provenance": dict(Counter(r.provenance for r in records)),
        "checked": sum(1 for r in records if r.checked),
        "recommended": sum(1 for r in records if r.recommended),
        "top_fields": {
            label: counter.most_common(top) for label, counter in field_counts.items()
        },
    }


def log_summary(summary: Dict[str, object]) -> None:
    logger.info("=" * 60)
    logger.info("RECORD SUMMARY")
    logger.info("=" * 60)
    logger.info(f"  Records:          {summary['total']}")
    logger.info(f"  Provenance:       {summary['by_provenance']}")
    logger.info(f"  Checked:          {summary['checked']}")
    logger.info(f"  Recommended:      {summary['recommended']}")
    for label, values in summary["top_fields"].items():
        rendered = ", ".join(f"{value} ({count})" for value, count in values)
        logger.info(f"  {label}: {rendered}")
    logger.info("=" * 60)
