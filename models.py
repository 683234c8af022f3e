"""Data structures for feedback records and the statistics derived from them."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

RATING_BUCKETS = (1, 2, 3, 4, 5)


@dataclass(frozen=True)
class Answer:
    question: str
    answer: object = 0
    type: str = 'rating'
    comment: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            return cls(question='', answer=0)
        return cls(
            question=str(data.get('question') or ''),
            answer=data.get('answer', 0),
            type=data.get('type') or 'rating',
            comment=data.get('comment'),
            category=data.get('category'),
        )


@dataclass(frozen=True)
class FeedbackRecord:
    """One student's submission for one subject and feedback type."""

    student_id: Optional[str] = None
    subject_id: Optional[str] = None
    feedback_type: Optional[str] = None
    answers: Tuple[Answer, ...] = ()
    submitted_at: Optional[datetime] = None
    term: Optional[int] = None
    academic_year: Optional[str] = None
    branch: Optional[str] = None
    year: Optional[int] = None
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    roll_number: Optional[str] = None
    subject_name: Optional[str] = None
    subject_code: Optional[str] = None
    instructor: Optional[str] = None

    @property
    def name(self):
        return self.student_name

    @property
    def email(self):
        return self.student_email

    @classmethod
    def from_dict(cls, data):
        """Build a record from backend JSON.

        ``student`` and ``subject`` may be plain ids or populated objects.
        Missing or malformed fields become ``None`` rather than raising.
        """
        student = data.get('student')
        subject = data.get('subject')
        if not isinstance(student, dict):
            student = {'_id': student} if student else {}
        if not isinstance(subject, dict):
            subject = {'_id': subject} if subject else {}

        answers = data.get('answers')
        if not isinstance(answers, list):
            answers = []

        return cls(
            student_id=_str_or_none(student.get('_id') or data.get('studentId')),
            subject_id=_str_or_none(subject.get('_id') or data.get('subjectId')),
            feedback_type=data.get('feedbackType'),
            answers=tuple(Answer.from_dict(a) for a in answers),
            submitted_at=parse_timestamp(data.get('submittedAt') or data.get('createdAt')),
            term=_int_or_none(data.get('term', subject.get('term', subject.get('semester')))),
            academic_year=data.get('academicYear'),
            branch=student.get('branch') or data.get('branch') or subject.get('branch'),
            year=_int_or_none(student.get('year', data.get('year'))),
            student_name=student.get('name'),
            student_email=student.get('email'),
            roll_number=student.get('rollNumber'),
            subject_name=subject.get('name'),
            subject_code=subject.get('code'),
            instructor=subject.get('instructor'),
        )


@dataclass(frozen=True)
class AggregateSummary:
    average_rating: float = 0
    total_responses: int = 0
    response_rate: int = 0
    distribution: Dict[int, int] = field(
        default_factory=lambda: {bucket: 0 for bucket in RATING_BUCKETS}
    )


@dataclass(frozen=True)
class GroupSummary:
    key: str
    summary: AggregateSummary
    min_rating: float = 0
    max_rating: float = 0


def parse_timestamp(value):
    """Parse an ISO-8601 timestamp from the backend; None if absent or invalid.

    Timestamps without an offset are taken as UTC so that every parsed value
    can be compared with every other.
    """
    if isinstance(value, datetime):
        parsed = value
    elif value and isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            logger.debug('Ignoring unparseable timestamp %r', value)
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def join_references(items, students=None, subjects=None):
    """Return copies of feedback JSON *items* with ``student``/``subject`` filled in.

    Feedback routes populate only some fields of the referenced documents
    (or none at all), so the matching roster entries are merged underneath
    whatever the backend did populate.
    """
    indexes = [
        (field_name, _index_by_id(roster))
        for field_name, roster in (('student', students), ('subject', subjects))
        if roster
    ]
    joined = []
    for data in items:
        data = dict(data)
        for field_name, index in indexes:
            reference = data.get(field_name)
            populated = reference if isinstance(reference, dict) else {'_id': reference}
            entry = index.get(_str_or_none(populated.get('_id')))
            if entry is not None:
                data[field_name] = {**entry, **populated}
        joined.append(data)
    return joined


def _index_by_id(items):
    return {str(item['_id']): item for item in items if isinstance(item, dict) and item.get('_id')}


def _int_or_none(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _str_or_none(value):
    return str(value) if value is not None else None
