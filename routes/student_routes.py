import logging

from flask import Blueprint, flash, g, redirect, render_template, request, url_for

from aggregator import record_average
from client import ApiError, get_client
from config import ENDPOINTS, FEEDBACK_TYPES
from session import role_required
from utils import fetch_or_flash

logger = logging.getLogger(__name__)

student_bp = Blueprint('student', __name__, url_prefix='/student')


def _active_periods(client):
    periods = fetch_or_flash(lambda: client.get_list(ENDPOINTS['active_periods']), [])
    return [p for p in periods if isinstance(p, dict) and p.get('feedbackType') in FEEDBACK_TYPES]


def _my_feedback(client):
    path = f"{ENDPOINTS['student_feedback']}/{g.auth.user_id}"
    return fetch_or_flash(lambda: client.feedback(path), [])


def _applicable_subjects(period):
    """Subjects of *period* that the backend says apply to this student."""
    subjects = period.get('applicableSubjects')
    if not isinstance(subjects, list):
        return []
    return [s for s in subjects if isinstance(s, dict) and s.get('_id')]


def _find_period(periods, feedback_type, subject_id):
    """Return ``(period, subject)`` for an open period covering the subject, or ``(None, None)``."""
    for period in periods:
        if period.get('feedbackType') != feedback_type:
            continue
        for subject in _applicable_subjects(period):
            if str(subject['_id']) == subject_id:
                return period, subject
    return None, None


def _is_submitted(records, subject_id, feedback_type):
    # Older submissions carry no type and block every type for that subject
    return any(
        r.subject_id == subject_id and r.feedback_type in (feedback_type, None)
        for r in records
    )


@student_bp.route('/')
@role_required('student')
def subjects():
    with get_client(g.auth) as client:
        periods = _active_periods(client)
        mine = _my_feedback(client)

    if not periods:
        flash("There is no active feedback period right now.", "info")

    sections = []
    for period in periods:
        feedback_type = period['feedbackType']
        rows = [
            {'subject': subject, 'submitted': _is_submitted(mine, str(subject['_id']), feedback_type)}
            for subject in _applicable_subjects(period)
        ]
        sections.append({'period': period, 'rows': rows})
    return render_template('student_subjects.html', sections=sections)


@student_bp.route('/feedback/<subject_id>', methods=['GET', 'POST'])
@role_required('student')
def submit_feedback(subject_id):
    feedback_type = request.args.get('type', 'midterm')
    if feedback_type not in FEEDBACK_TYPES:
        flash("Unknown feedback type.", "danger")
        return redirect(url_for('student.subjects'))
    questions = FEEDBACK_TYPES[feedback_type]

    with get_client(g.auth) as client:
        periods = _active_periods(client)
        mine = _my_feedback(client)

    period, subject = _find_period(periods, feedback_type, subject_id)
    if period is None:
        flash(f"There is no active {feedback_type} feedback period for this subject.", "danger")
        return redirect(url_for('student.subjects'))

    if _is_submitted(mine, subject_id, feedback_type):
        flash("Feedback already submitted for this subject.", "info")
        return redirect(url_for('student.subjects'))

    if request.method == 'POST':
        answers, errors = _collect_answers(request.form, questions)
        if errors:
            for error in errors:
                flash(error, "danger")
            return redirect(url_for('student.submit_feedback', subject_id=subject_id, type=feedback_type))

        payload = {
            'student': g.auth.user_id,
            'subject': subject_id,
            'feedbackType': feedback_type,
            'term': subject.get('semester') or subject.get('term'),
            'academicYear': period.get('academicYear'),
            'answers': answers,
        }
        try:
            with get_client(g.auth) as client:
                client.post(ENDPOINTS['feedback'], payload)
        except ApiError as exc:
            flash(str(exc), "danger")
            return redirect(url_for('student.submit_feedback', subject_id=subject_id, type=feedback_type))

        logger.info("Student %s submitted %s feedback for subject %s",
                    g.auth.user_id, feedback_type, subject_id)
        flash("Feedback submitted successfully. Thank you!", "success")
        return redirect(url_for('student.subjects'))

    return render_template('feedback_form.html',
                           subject=subject,
                           period=period,
                           feedback_type=feedback_type,
                           questions=questions)


@student_bp.route('/my-feedback')
@role_required('student')
def my_feedback():
    with get_client(g.auth) as client:
        mine = _my_feedback(client)
    rows = [(record, record_average(record)) for record in mine]
    return render_template('my_feedback.html', rows=rows)


def _collect_answers(form, questions):
    """Validate the submitted form against the question template."""
    answers = []
    errors = []
    for question_id, text, kind, category in questions:
        value = (form.get(question_id) or '').strip()
        if kind == 'comment':
            answers.append({'question': text, 'answer': 0, 'type': 'comment',
                            'category': category, 'comment': value})
            continue
        if not value:
            errors.append(f"Please rate: {text}")
            continue
        try:
            score = int(value)
        except ValueError:
            errors.append(f"Invalid rating value for: {text}")
            continue
        if not 1 <= score <= 5:
            errors.append(f"Ratings must be between 1 and 5: {text}")
            continue
        answers.append({'question': text, 'answer': score, 'type': 'rating', 'category': category})
    return answers, errors
