"""Aggregate feedback records into display-ready statistics.

Every function here is pure: inputs are never mutated, nothing is cached
between calls and no I/O happens. Malformed values are treated as
"unanswered" (``0``) instead of raising, so any page can hand over whatever
the backend returned.

Records may be :class:`~models.FeedbackRecord` instances or the raw JSON
mappings returned by the backend.
"""
import math
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, localcontext

from filters import FilterCriteria
from models import RATING_BUCKETS, AggregateSummary, FeedbackRecord, GroupSummary

UNKNOWN_GROUP = 'Unknown'

# Record attribute(s) consulted for each filter dimension, in order
_FILTER_FIELDS = {
    'term': ('term', 'semester'),
    'branch': ('branch',),
    'year': ('year',),
    'role': ('role',),
}

_SEARCH_FIELDS = (
    ('name', 'student_name'),
    ('email', 'student_email'),
    ('rollNumber', 'roll_number'),
)

_GROUP_KEYS = {
    'branch': lambda r: r.branch,
    'term': lambda r: r.term,
    'year': lambda r: r.year,
    'subject': lambda r: r.subject_name or r.subject_code or r.subject_id,
    'instructor': lambda r: r.instructor,
    'feedback_type': lambda r: r.feedback_type,
}


def coerce_rating(value):
    """Return *value* as a float, or 0 when it is missing or not numeric."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def round_half_up(value, places=0):
    """Round like a person would: 4.25 -> 4.3, 2.5 -> 3.

    Infinities and NaN are returned unchanged.
    """
    value = float(value)
    if not math.isfinite(value):
        return value
    number = Decimal(repr(value))
    with localcontext() as context:
        # quantize needs room for every digit left of the decimal point
        context.prec = max(context.prec, number.adjusted() + places + 2)
        return float(number.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def rating_values(records):
    """Return every answered rating (> 0) across *records*, comments excluded."""
    values = []
    for record in records:
        for answer in _answers(record):
            kind, raw = _answer_fields(answer)
            if kind == 'comment':
                continue
            value = _clamped_rating(raw)
            if value > 0:
                values.append(value)
    return values


def compute_average(records):
    """Mean rating across *records*, one decimal, 0 when nothing was rated."""
    values = rating_values(records)
    if not values:
        return 0
    return round_half_up(sum(values) / len(values), 1)


def compute_distribution(records):
    """Count ratings per star bucket. All five buckets are always present."""
    distribution = {bucket: 0 for bucket in RATING_BUCKETS}
    for value in rating_values(records):
        bucket = int(math.floor(value + 0.5))
        bucket = min(max(bucket, RATING_BUCKETS[0]), RATING_BUCKETS[-1])
        distribution[bucket] += 1
    return distribution


def compute_response_rate(submitted_count, expected_count):
    """Percentage of expected submissions received, clamped to [0, 100]."""
    submitted = coerce_rating(submitted_count)
    expected = coerce_rating(expected_count)
    if expected <= 0:
        return 0
    rate = round_half_up(submitted / expected * 100)
    return int(min(max(rate, 0), 100))


def filter_by_criteria(records, criteria):
    """Return the records matching every set dimension of *criteria*.

    Unset (``ALL``) dimensions match everything. The free-text search is a
    case-insensitive substring match over name, email and roll number.
    Input order is preserved.
    """
    criteria = FilterCriteria.coerce(criteria)
    if criteria.is_empty():
        return list(records)

    needle = criteria.search.lower()
    matched = []
    for record in records:
        if not all(
            getattr(criteria, dimension).matches(_lookup(record, *fields))
            for dimension, fields in _FILTER_FIELDS.items()
        ):
            continue
        if needle and not _matches_search(record, needle):
            continue
        matched.append(record)
    return matched


def summarize(records, expected_count=0):
    """Build the :class:`AggregateSummary` for *records*."""
    records = list(records)
    return AggregateSummary(
        average_rating=compute_average(records),
        total_responses=len(records),
        response_rate=compute_response_rate(len(records), expected_count),
        distribution=compute_distribution(records),
    )


def record_average(record):
    return compute_average([record])


def distribution_percentages(distribution):
    """Share of each bucket in percent (one decimal); zeros for no data."""
    total = sum(distribution.get(bucket, 0) for bucket in RATING_BUCKETS)
    if not total:
        return {bucket: 0.0 for bucket in RATING_BUCKETS}
    return {
        bucket: round_half_up(distribution.get(bucket, 0) / total * 100, 1)
        for bucket in RATING_BUCKETS
    }


def question_averages(records):
    """Return ``(question, average, count)`` per rating question in first-seen order."""
    totals = {}
    for record in records:
        for answer in _answers(record):
            kind, raw = _answer_fields(answer)
            if kind == 'comment':
                continue
            question = _answer_question(answer)
            entry = totals.setdefault(question, [0.0, 0])
            value = _clamped_rating(raw)
            if value > 0:
                entry[0] += value
                entry[1] += 1
    return [
        (question, round_half_up(total / count, 1) if count else 0, count)
        for question, (total, count) in totals.items()
    ]


def comments(records):
    """Return ``(question, text)`` for every non-empty comment answer."""
    collected = []
    for record in records:
        for answer in _answers(record):
            kind, _ = _answer_fields(answer)
            if kind != 'comment':
                continue
            text = _answer_comment(answer)
            if text:
                collected.append((_answer_question(answer), text))
    return collected


def group_summaries(records, key, expected=None):
    """Summarize *records* per group, best average first.

    *key* is one of ``branch``, ``term``, ``year``, ``subject``,
    ``instructor`` or ``feedback_type``. *expected* optionally maps a group
    label to its roster size for the per-group response rate.
    """
    if key not in _GROUP_KEYS:
        raise ValueError(f'Unknown group key {key!r}. Must be one of: {sorted(_GROUP_KEYS)}')
    key_of = _GROUP_KEYS[key]
    expected = expected or {}

    groups = {}
    for record in records:
        record = _as_record(record)
        label = key_of(record)
        label = UNKNOWN_GROUP if label in (None, '') else str(label)
        groups.setdefault(label, []).append(record)

    results = []
    for label, members in groups.items():
        averages = [a for a in (record_average(m) for m in members) if a > 0]
        results.append(GroupSummary(
            key=label,
            summary=summarize(members, expected.get(label, 0)),
            min_rating=min(averages) if averages else 0,
            max_rating=max(averages) if averages else 0,
        ))
    results.sort(key=lambda g: (-g.summary.average_rating, g.key))
    return results


def subject_summaries(records, subjects):
    """Pair each subject mapping with the summary of its records.

    Subjects keep their given order; a subject nobody reviewed gets an empty
    summary. Records for subjects not listed are ignored.
    """
    by_subject = {}
    for record in records:
        record = _as_record(record)
        by_subject.setdefault(record.subject_id, []).append(record)
    return [
        (subject, summarize(by_subject.get(str(_lookup(subject, '_id', 'id')), [])))
        for subject in subjects
    ]


def instructor_performance(records, min_feedbacks=3):
    """Instructor groups with at least *min_feedbacks* submissions, best first."""
    return [
        group for group in group_summaries(records, 'instructor')
        if group.summary.total_responses >= min_feedbacks
    ]


def monthly_trends(records):
    """Return ``(YYYY-MM, count, average)`` per month, oldest first."""
    months = {}
    for record in records:
        record = _as_record(record)
        if record.submitted_at is None:
            continue
        months.setdefault(record.submitted_at.strftime('%Y-%m'), []).append(record)
    return [
        (month, len(members), compute_average(members))
        for month, members in sorted(months.items())
    ]


def submitted_pairs(records):
    """Return the ``(student_id, subject_id)`` pairs present in *records*."""
    pairs = set()
    for record in records:
        record = _as_record(record)
        if record.student_id and record.subject_id:
            pairs.add((record.student_id, record.subject_id))
    return pairs


def submission_status(students, subjects, pairs):
    """Expected submissions per student and subject with their status.

    A student is expected to review a subject when the subject's term falls
    in the student's year, i.e. ``ceil(term / 2) == year``.
    """
    rows = []
    for subject in subjects:
        term = _to_int(_lookup(subject, 'term', 'semester'))
        if term is None:
            continue
        subject_id = str(_lookup(subject, '_id', 'id'))
        for student in students:
            if _to_int(_lookup(student, 'year')) != math.ceil(term / 2):
                continue
            student_id = str(_lookup(student, '_id', 'id'))
            rows.append({
                'student': student,
                'subject': subject,
                'term': term,
                'submitted': (student_id, subject_id) in pairs,
            })
    return rows


def term_submission_rates(rows):
    """Return ``(term, submitted, expected, rate)`` per term, ascending."""
    terms = {}
    for row in rows:
        entry = terms.setdefault(row['term'], [0, 0])
        entry[1] += 1
        if row['submitted']:
            entry[0] += 1
    return [
        (term, submitted, expected, compute_response_rate(submitted, expected))
        for term, (submitted, expected) in sorted(terms.items())
    ]


def response_rate_band(rate):
    """Classify a response rate as 'high' (>= 80), 'medium' (>= 60) or 'low'."""
    rate = coerce_rating(rate)
    if rate >= 80:
        return 'high'
    if rate >= 60:
        return 'medium'
    return 'low'


def _clamped_rating(value):
    return min(coerce_rating(value), RATING_BUCKETS[-1])


def _as_record(record):
    if isinstance(record, Mapping):
        return FeedbackRecord.from_dict(record)
    return record


def _answers(record):
    if isinstance(record, Mapping):
        answers = record.get('answers')
    else:
        answers = getattr(record, 'answers', None)
    if not isinstance(answers, (list, tuple)):
        return ()
    return answers


def _answer_fields(answer):
    if isinstance(answer, Mapping):
        return answer.get('type'), answer.get('answer')
    return getattr(answer, 'type', None), getattr(answer, 'answer', None)


def _answer_question(answer):
    if isinstance(answer, Mapping):
        return str(answer.get('question') or '')
    return str(getattr(answer, 'question', '') or '')


def _answer_comment(answer):
    if isinstance(answer, Mapping):
        text = answer.get('comment')
    else:
        text = getattr(answer, 'comment', None)
    return str(text).strip() if text else ''


def _lookup(record, *names):
    for name in names:
        if isinstance(record, Mapping):
            value = record.get(name)
        else:
            value = getattr(record, name, None)
        if value is not None:
            return value
    return None


def _matches_search(record, needle):
    for names in _SEARCH_FIELDS:
        value = _lookup(record, *names)
        if value is not None and needle in str(value).lower():
            return True
    return False


def _to_int(value):
    number = coerce_rating(value)
    return int(number) if number else None
