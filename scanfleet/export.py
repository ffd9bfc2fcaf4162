"""
Result export for a job's findings.

CSV columns are fixed and ordered: target, rule, severity, match,
timestamp, source_node.
"""
from __future__ import annotations

import csv
import io
import json
from typing import Iterable

from scanfleet.models import ResultRecord, Severity

CSV_COLUMNS = ["target", "rule", "severity", "match", "timestamp", "source_node"]

CSV_CONTENT_TYPE = "text/csv"
JSON_CONTENT_TYPE = "application/json"


def filter_results(records: Iterable[ResultRecord],
                   min_severity: Severity | None = None) -> list[ResultRecord]:
    """Keep records at or above ``min_severity`` (all if None)."""
    if min_severity is None:
        return list(records)
    return [r for r in records if r.severity >= min_severity]


def results_to_csv(records: Iterable[ResultRecord]) -> str:
    """Render records as CSV text with a header row."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    for r in records:
        row = r.to_dict()
        writer.writerow([row[col] for col in CSV_COLUMNS])
    return output.getvalue()


def results_to_json(records: Iterable[ResultRecord], job_id: str = "",
                    pretty: bool = False) -> str:
    """Render records as a JSON document ``{job_id, count, results}``."""
    rows = [r.to_dict() for r in records]
    data = {
        "job_id": job_id,
        "count": len(rows),
        "results": rows,
    }
    return json.dumps(data, indent=2 if pretty else None, default=str)


def csv_filename(job_id: str) -> str:
    return f"scan-{job_id[:8]}-results.csv"
