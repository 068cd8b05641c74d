#!/usr/bin/env python3
"""
Report generation for the UA Privilege Scanner.

A report is a table with one row per endpoint and one column per
privilege x authentication-method pair. Each cell is ``granted``, ``denied``
(tested, not granted) or ``untested``.
"""

import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List

from scanners.ledger import AuthMethod, Privilege

ENDPOINT_COLUMNS = ["endpoint_url", "security_policy", "security_mode"]

GRANTED = "granted"
DENIED = "denied"
UNTESTED = "untested"


def cell_label(cell):
    """Return the report text of an AccessCell."""
    if cell.granted:
        return GRANTED
    if cell.tested:
        return DENIED
    return UNTESTED


def column_name(privilege, method):
    return f"{privilege.value}/{method.value}"


def matrix_columns() -> List[str]:
    return [column_name(p, m) for p in Privilege for m in AuthMethod]


def result_to_rows(scan_result) -> List[Dict[str, str]]:
    """Flatten a ScanResult into one dict per endpoint, in registration order."""
    rows = []
    for identity, record in scan_result.items():
        row = {
            "endpoint_url": identity.url,
            "security_policy": identity.security_policy,
            "security_mode": identity.security_mode,
        }
        for (privilege, method), cell in record.items():
            row[column_name(privilege, method)] = cell_label(cell)
        rows.append(row)
    return rows


def generate_csv_report(scan_result, path):
    """Write the privilege matrix as CSV to *path*."""
    path = Path(path)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=ENDPOINT_COLUMNS + matrix_columns())
        writer.writeheader()
        writer.writerows(result_to_rows(scan_result))
    return path


def generate_json_report(scan_result, path):
    """Write the privilege matrix plus scan metadata as JSON to *path*."""
    path = Path(path)
    document = {
        "metadata": {
            "started_at": scan_result.started_at.isoformat() if scan_result.started_at else None,
            "finished_at": scan_result.finished_at.isoformat() if scan_result.finished_at else None,
            "aborted": scan_result.aborted,
            "abort_reason": scan_result.abort_reason,
            "endpoint_count": len(scan_result),
        },
        "endpoints": [
            {
                "endpoint_url": identity.url,
                "security_policy": identity.security_policy,
                "security_mode": identity.security_mode,
                "access": {
                    column_name(p, m): {"tested": cell.tested, "granted": cell.granted}
                    for (p, m), cell in record.items()
                },
            }
            for identity, record in scan_result.items()
        ],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    return path


REPORT_GENERATORS = {
    "csv": generate_csv_report,
    "json": generate_json_report,
}


def generate_report(scan_result, format_type, output_file=None, output_dir="reports"):
    """
    Write a report in *format_type* into *output_dir*.

    Args:
        scan_result (ScanResult): Finalized scan results
        format_type (str): 'csv' or 'json'
        output_file (str): File name without extension; timestamped when None
        output_dir (str): Directory the report is written to (created if needed)

    Returns:
        Path: Location of the written report
    """
    if format_type not in REPORT_GENERATORS:
        raise ValueError(f"Unsupported report format: {format_type}")

    output_file = output_file or f"ua_scan_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    return REPORT_GENERATORS[format_type](scan_result, directory / f"{output_file}.{format_type}")
