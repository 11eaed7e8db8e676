# services/export_service.py
import csv
from datetime import date, datetime, timezone
from typing import Optional, Sequence

import pandas as pd

from rct_allocator.models.schemas.experiment import Participant

CSV_COLUMNS = [
    "participantId",
    "assignedGroup",
    "assignedGroupName",
    "severity",
    "assignedAt",
]
MISSING_SEVERITY = "N/A"


def to_utc_iso(value: datetime) -> str:
    """
    Formats a timestamp as ISO-8601 UTC with millisecond precision, e.g.
    ``2024-05-01T08:30:00.000Z``. Naive timestamps are read as local time.
    """
    utc_value = value.astimezone(timezone.utc)
    return utc_value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"rct_assignments_{today.isoformat()}.csv"


def participants_to_csv(participants: Sequence[Participant]) -> Optional[bytes]:
    """
    Renders the participant list as a UTF-8 CSV (with BOM) for spreadsheet tools.

    Text fields are always double-quoted; the group number is not. Returns
    None when there is nothing to export.
    """
    if not participants:
        return None

    df = pd.DataFrame(
        {
            "participantId": [p.participant_id for p in participants],
            "assignedGroup": [p.assigned_group for p in participants],
            "assignedGroupName": [p.assigned_group_name for p in participants],
            "severity": [p.severity.value if p.severity else MISSING_SEVERITY for p in participants],
            "assignedAt": [to_utc_iso(p.assigned_at) for p in participants],
        },
        columns=CSV_COLUMNS,
    )

    # Header row is written bare; QUOTE_NONNUMERIC quotes every text cell.
    body = df.to_csv(
        index=False,
        header=False,
        quoting=csv.QUOTE_NONNUMERIC,
        lineterminator="\n",
    )
    csv_string = ",".join(CSV_COLUMNS) + "\n" + body.rstrip("\n")

    return csv_string.encode("utf-8-sig")
