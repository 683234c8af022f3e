import csv
import io
import math
from datetime import datetime, timezone

from flask import flash

from aggregator import filter_by_criteria
from client import ApiError
from models import parse_timestamp


def safe_filename(*parts):
    """Join parts into a filename-safe stem, e.g. ('MCA DS', 'Sem 3') -> 'MCA_DS_Sem_3'."""
    cleaned = [str(part).strip().replace(' ', '_').replace('/', '_') for part in parts if part]
    return '_'.join(cleaned) or 'all'


def normalize_semester(semester):
    """Normalize semester string by removing 'semester' prefix if present."""
    semester = str(semester or '').strip()
    if semester.lower().startswith("semester"):
        semester = semester[len("semester"):].strip()
    return semester


def csv_bytes(headers, rows):
    """Return UTF-8 CSV content with a header row."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return output.getvalue().encode('utf-8')


def group_report_rows(groups):
    """Rows for a CSV report of GroupSummary objects."""
    for group in groups:
        summary = group.summary
        yield [
            group.key,
            summary.total_responses,
            f"{summary.average_rating:.2f}",
            f"{group.min_rating:.2f}",
            f"{group.max_rating:.2f}",
            *(summary.distribution[bucket] for bucket in (5, 4, 3, 2, 1)),
        ]


GROUP_REPORT_HEADERS = [
    'Group', 'Responses', 'Average Rating', 'Min Rating', 'Max Rating',
    '5 Stars', '4 Stars', '3 Stars', '2 Stars', '1 Star',
]


def fetch_or_flash(fetch, default=None):
    """Run *fetch*; on ApiError flash the message and return *default*."""
    try:
        return fetch()
    except ApiError as exc:
        flash(str(exc), "danger")
        return default


def filtered_users(users, criteria):
    """Filter user JSON from the backend and sort it by role then name."""
    users = filter_by_criteria(users, criteria)
    return sorted(users, key=lambda u: (str(u.get('role') or ''), str(u.get('name') or '').lower()))


def days_remaining(period, now=None):
    """Whole days left before an active feedback period closes, 0 otherwise."""
    if period.get('status') != 'active':
        return 0
    end = parse_timestamp(period.get('endDate'))
    if end is None:
        return 0
    now = now or datetime.now(timezone.utc)
    return max(math.ceil((end - now).total_seconds() / 86400), 0)
