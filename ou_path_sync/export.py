"""CSV export of reconciliation records."""

import csv
import os
import logging
from typing import Iterable

from ou_path_sync.reconcile import ReconciliationRecord

logger = logging.getLogger(__name__)

COLUMNS = [
    'DisplayName', 'Action', 'Updated', 'NewEntry', 'ExistingEntry',
    'EmailAddress', 'ObjectClass', 'WhenChanged', 'WhenCreated', 'Domain'
]


def export_records(records: Iterable[ReconciliationRecord], output_path: str) -> int:
    """
    Write records to a CSV file with a header row.

    Args:
        records: Records to write
        output_path: Destination file, overwritten if present

    Returns:
        Number of rows written
    """
    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    count = 0
    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=COLUMNS)
        writer.writeheader()
        for record in records:
            writer.writerow(record.as_row())
            count += 1

    logger.info(f"Exported {count} records to {output_path}")
    return count
