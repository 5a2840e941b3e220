"""
CSV Export

Client-side export of loaded transactions for offline review. No request is
made; the caller writes the returned text wherever it needs to.
"""

import csv
import io
from datetime import date, datetime
from typing import Iterable, Optional

from reconciliation_client.models import BankTransaction

EXPORT_CSV_HEADERS = ["Date", "Description", "Amount", "Status", "Matched Invoice", "Confidence"]

UTF8_BOM = "\ufeff"


def format_date(value: Optional[str]) -> str:
    """ISO timestamp -> "Jan 15, 2024". Unparseable input yields "Invalid date"."""
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return "Invalid date"
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def _row(txn: BankTransaction) -> list:
    confidence = f"{txn.confidence_score:.1f}%" if txn.confidence_score is not None else ""
    invoice_number = txn.matched_invoice.invoice_number if txn.matched_invoice else ""
    return [
        format_date(txn.transaction_date),
        txn.description,
        f"{txn.amount:.2f}",
        txn.status.value,
        invoice_number,
        confidence,
    ]


def generate_csv(transactions: Iterable[BankTransaction], include_bom: bool = True) -> str:
    """
    Render transactions as CSV.

    Raises:
        ValueError: when there is nothing to export
    """
    rows = [_row(txn) for txn in transactions]
    if not rows:
        raise ValueError("No transactions to export")

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_CSV_HEADERS)
    writer.writerows(rows)

    content = output.getvalue()
    return UTF8_BOM + content if include_bom else content


def export_filename(prefix: str = "unmatched_transactions", today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{prefix}_{today.isoformat()}.csv"
