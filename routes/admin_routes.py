import io
import logging
from datetime import datetime

from flask import Blueprint, flash, g, redirect, render_template, request, send_file, url_for

from aggregator import (
    compute_response_rate, comments, distribution_percentages, filter_by_criteria,
    group_summaries, question_averages, record_average, subject_summaries, summarize,
)
from charts import distribution_chart, ratings_bar_chart, to_data_uri
from client import ApiError, get_client
from config import (
    BRANCHES, DEFAULT_ACADEMIC_YEAR, ENDPOINTS, FEEDBACK_TYPES, PERIOD_ACTIONS, PERIOD_STATUSES,
    PERIOD_TERMS, ROLES, TERMS, YEARS,
)
from filters import FilterCriteria, parse_filter
from session import role_required
from utils import (
    GROUP_REPORT_HEADERS, csv_bytes, days_remaining, fetch_or_flash, filtered_users,
    group_report_rows, normalize_semester, safe_filename,
)

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')

RECENT_FEEDBACK_LIMIT = 5


def _load_users(client):
    return fetch_or_flash(lambda: client.get_list(ENDPOINTS['users'], key='users'), [])


def _all_feedback(client, users):
    """Every submission, with student details joined from *users*.

    The admin feedback list only populates the subject.
    """
    return client.feedback(ENDPOINTS['feedback'], students=users)


@admin_bp.route('/')
@role_required('admin')
def dashboard():
    with get_client(g.auth) as client:
        users = _load_users(client)
        subjects = fetch_or_flash(lambda: client.get_list(ENDPOINTS['subjects']), [])
        records = fetch_or_flash(lambda: _all_feedback(client, users), [])

    students = [u for u in users if u.get('role') == 'student']
    faculty = [u for u in users if u.get('role') == 'faculty']
    # Every student is expected to review every subject
    expected = len(students) * len(subjects)
    summary = summarize(records, expected)

    recent = sorted(
        (r for r in records if r.submitted_at is not None),
        key=lambda r: r.submitted_at, reverse=True,
    )[:RECENT_FEEDBACK_LIMIT]

    graph_url = None
    if summary.total_responses:
        graph_url = to_data_uri(distribution_chart(summary.distribution, 'Rating Distribution'))

    return render_template('admin_dashboard.html',
                           stats={
                               'students': len(students),
                               'faculty': len(faculty),
                               'subjects': len(subjects),
                               'feedbacks': summary.total_responses,
                           },
                           summary=summary,
                           completion=compute_response_rate(summary.total_responses, expected),
                           recent=[(r, record_average(r)) for r in recent],
                           graph_url=graph_url)


@admin_bp.route('/users', methods=['GET', 'POST'])
@role_required('admin')
def users():
    if request.method == 'POST':
        payload, errors = _user_payload(request.form, require_password=True)
        if errors:
            for error in errors:
                flash(error, "danger")
            return redirect(url_for('admin.users'))
        try:
            with get_client(g.auth) as client:
                client.post(ENDPOINTS['users'], payload)
        except ApiError as exc:
            flash(str(exc), "danger")
        else:
            logger.info("Admin %s created user %s", g.auth.user_id, payload['email'])
            flash("User created successfully.", "success")
        return redirect(url_for('admin.users'))

    criteria = FilterCriteria.from_args(request.args)
    with get_client(g.auth) as client:
        all_users = _load_users(client)

    return render_template('admin_users.html',
                           users=filtered_users(all_users, criteria),
                           user={},
                           total=len(all_users),
                           filters=criteria.to_args(),
                           roles=ROLES, branches=BRANCHES, years=YEARS)


@admin_bp.route('/users/<user_id>/edit', methods=['GET', 'POST'])
@role_required('admin')
def edit_user(user_id):
    path = f"{ENDPOINTS['users']}/{user_id}"
    if request.method == 'POST':
        payload, errors = _user_payload(request.form, require_password=False)
        if errors:
            for error in errors:
                flash(error, "danger")
            return redirect(url_for('admin.edit_user', user_id=user_id))
        try:
            with get_client(g.auth) as client:
                client.put(path, payload)
        except ApiError as exc:
            flash(str(exc), "danger")
            return redirect(url_for('admin.edit_user', user_id=user_id))
        logger.info("Admin %s updated user %s", g.auth.user_id, user_id)
        flash("User updated successfully.", "success")
        return redirect(url_for('admin.users'))

    with get_client(g.auth) as client:
        all_users = _load_users(client)
    user = next((u for u in all_users if str(u.get('_id')) == user_id), None)
    if user is None:
        flash("User not found.", "danger")
        return redirect(url_for('admin.users'))
    return render_template('admin_user_form.html', user=user,
                           roles=ROLES, branches=BRANCHES, years=YEARS)


@admin_bp.route('/users/<user_id>/delete', methods=['POST'])
@role_required('admin')
def delete_user(user_id):
    if user_id == g.auth.user_id:
        flash("You cannot delete your own account.", "danger")
        return redirect(url_for('admin.users'))
    try:
        with get_client(g.auth) as client:
            client.delete(f"{ENDPOINTS['users']}/{user_id}")
    except ApiError as exc:
        flash(str(exc), "danger")
    else:
        logger.info("Admin %s deleted user %s", g.auth.user_id, user_id)
        flash("User deleted.", "success")
    return redirect(url_for('admin.users'))


@admin_bp.route('/subjects', methods=['GET', 'POST'])
@role_required('admin')
def subjects():
    if request.method == 'POST':
        payload, errors = _subject_payload(request.form)
        if errors:
            for error in errors:
                flash(error, "danger")
            return redirect(url_for('admin.subjects'))
        try:
            with get_client(g.auth) as client:
                client.post(ENDPOINTS['subjects'], payload)
        except ApiError as exc:
            flash(str(exc), "danger")
        else:
            logger.info("Admin %s created subject %s", g.auth.user_id, payload['code'])
            flash("Subject created successfully.", "success")
        return redirect(url_for('admin.subjects'))

    criteria = FilterCriteria.from_args(request.args)
    with get_client(g.auth) as client:
        all_subjects = fetch_or_flash(lambda: client.get_list(ENDPOINTS['subjects']), [])
    matched = filter_by_criteria(all_subjects, criteria)
    matched.sort(key=lambda s: (str(s.get('branch') or ''), s.get('semester') or 0, str(s.get('name') or '')))

    return render_template('admin_subjects.html',
                           subjects=matched,
                           filters=criteria.to_args(),
                           branches=BRANCHES, terms=TERMS)


@admin_bp.route('/subjects/<subject_id>/delete', methods=['POST'])
@role_required('admin')
def delete_subject(subject_id):
    try:
        with get_client(g.auth) as client:
            client.delete(f"{ENDPOINTS['subjects']}/{subject_id}")
    except ApiError as exc:
        flash(str(exc), "danger")
    else:
        logger.info("Admin %s deleted subject %s", g.auth.user_id, subject_id)
        flash("Subject deleted.", "success")
    return redirect(url_for('admin.subjects'))


@admin_bp.route('/reports')
@role_required('admin')
def reports():
    criteria = FilterCriteria.from_args(request.args)
    with get_client(g.auth) as client:
        users = _load_users(client)
        records = fetch_or_flash(lambda: _all_feedback(client, users), [])
    records = filter_by_criteria(records, criteria)

    instructors = group_summaries(records, 'instructor')
    subject_groups = _subject_rows(records)

    graph_url = None
    if instructors:
        graph_url = to_data_uri(ratings_bar_chart(
            {group.key: group.summary.average_rating for group in instructors},
            'Average Rating by Instructor', ylabel='Instructor'))

    return render_template('admin_reports.html',
                           summary=summarize(records),
                           instructors=instructors,
                           subjects=subject_groups,
                           graph_url=graph_url,
                           filters=criteria.to_args(),
                           branches=BRANCHES, terms=TERMS, years=YEARS)


@admin_bp.route('/reports/<subject_id>')
@role_required('admin')
def report_detail(subject_id):
    with get_client(g.auth) as client:
        users = _load_users(client)
        records = fetch_or_flash(lambda: _all_feedback(client, users), [])
    records = [r for r in records if r.subject_id == subject_id]
    if not records:
        flash("No feedback found for this subject.", "info")
        return redirect(url_for('admin.reports'))

    summary = summarize(records)
    subject = records[0]
    return render_template('report_detail.html',
                           subject=subject,
                           summary=summary,
                           percentages=distribution_percentages(summary.distribution),
                           questions=question_averages(records),
                           comments=comments(records),
                           graph_url=to_data_uri(distribution_chart(
                               summary.distribution, subject.subject_name or 'Subject')),
                           back_url=url_for('admin.reports'))


@admin_bp.route('/reports/download')
@role_required('admin')
def download_report():
    criteria = FilterCriteria.from_args(request.args)
    try:
        with get_client(g.auth) as client:
            users = client.get_list(ENDPOINTS['users'], key='users')
            records = _all_feedback(client, users)
    except ApiError as exc:
        flash(str(exc), "danger")
        return redirect(url_for('admin.reports'))

    groups = group_summaries(filter_by_criteria(records, criteria), 'subject')
    filename = f"feedback_report_{safe_filename(*(v for v in criteria.to_args().values() if v != 'all'))}.csv"
    return send_file(
        io.BytesIO(csv_bytes(GROUP_REPORT_HEADERS, group_report_rows(groups))),
        mimetype='text/csv',
        as_attachment=True,
        download_name=filename,
    )


@admin_bp.route('/periods', methods=['GET', 'POST'])
@role_required('admin')
def periods():
    if request.method == 'POST':
        payload, errors = _period_payload(request.form)
        if errors:
            for error in errors:
                flash(error, "danger")
            return redirect(url_for('admin.periods'))
        try:
            with get_client(g.auth) as client:
                client.post(ENDPOINTS['periods'], payload)
        except ApiError as exc:
            flash(str(exc), "danger")
        else:
            logger.info("Admin %s created %s feedback period %r",
                        g.auth.user_id, payload['feedbackType'], payload['title'])
            flash("Feedback period created successfully.", "success")
        return redirect(url_for('admin.periods'))

    status = parse_filter(request.args.get('status'))
    feedback_type = parse_filter(request.args.get('feedbackType'))
    with get_client(g.auth) as client:
        all_periods = fetch_or_flash(lambda: client.get_list(
            ENDPOINTS['all_periods'],
            status=status.value if status else None,
            feedbackType=feedback_type.value if feedback_type else None,
        ), [])
        all_subjects = fetch_or_flash(lambda: client.get_list(ENDPOINTS['subjects']), [])

    return render_template('admin_periods.html',
                           periods=[(p, days_remaining(p)) for p in all_periods if isinstance(p, dict)],
                           period={},
                           selected_subjects=set(),
                           subjects=all_subjects,
                           status=status.value if status else 'all',
                           feedback_type=feedback_type.value if feedback_type else 'all',
                           **_period_choices())


@admin_bp.route('/periods/<period_id>/edit', methods=['GET', 'POST'])
@role_required('admin')
def edit_period(period_id):
    if request.method == 'POST':
        payload, errors = _period_payload(request.form)
        if errors:
            for error in errors:
                flash(error, "danger")
            return redirect(url_for('admin.edit_period', period_id=period_id))
        try:
            with get_client(g.auth) as client:
                client.put(f"{ENDPOINTS['periods']}/{period_id}", payload)
        except ApiError as exc:
            flash(str(exc), "danger")
            return redirect(url_for('admin.edit_period', period_id=period_id))
        logger.info("Admin %s updated feedback period %s", g.auth.user_id, period_id)
        flash("Feedback period updated successfully.", "success")
        return redirect(url_for('admin.periods'))

    with get_client(g.auth) as client:
        period = _find_period(client, period_id)
        all_subjects = fetch_or_flash(lambda: client.get_list(ENDPOINTS['subjects']), [])
    if period is None:
        flash("Feedback period not found.", "danger")
        return redirect(url_for('admin.periods'))
    return render_template('admin_period_form.html',
                           period=period,
                           selected_subjects={str(s.get('_id')) for s in _period_subjects(period)},
                           subjects=all_subjects,
                           **_period_choices())


@admin_bp.route('/periods/<period_id>/toggle', methods=['POST'])
@role_required('admin')
def toggle_period(period_id):
    action = request.form.get('action', '')
    if action not in PERIOD_ACTIONS:
        flash("Unknown action for a feedback period.", "danger")
        return redirect(url_for('admin.periods'))
    try:
        with get_client(g.auth) as client:
            client.patch(f"{ENDPOINTS['periods']}/{period_id}/toggle", {'action': action})
    except ApiError as exc:
        flash(str(exc), "danger")
    else:
        logger.info("Admin %s %s feedback period %s", g.auth.user_id, PERIOD_ACTIONS[action], period_id)
        flash(f"Feedback period {PERIOD_ACTIONS[action]}.", "success")
    return redirect(url_for('admin.periods'))


@admin_bp.route('/periods/<period_id>/delete', methods=['POST'])
@role_required('admin')
def delete_period(period_id):
    try:
        with get_client(g.auth) as client:
            client.delete(f"{ENDPOINTS['periods']}/{period_id}")
    except ApiError as exc:
        flash(str(exc), "danger")
    else:
        logger.info("Admin %s deleted feedback period %s", g.auth.user_id, period_id)
        flash("Feedback period deleted.", "success")
    return redirect(url_for('admin.periods'))


@admin_bp.route('/periods/<period_id>/stats')
@role_required('admin')
def period_stats(period_id):
    with get_client(g.auth) as client:
        period = _find_period(client, period_id)
        if period is None:
            flash("Feedback period not found.", "danger")
            return redirect(url_for('admin.periods'))
        users = _load_users(client)
        records = fetch_or_flash(lambda: _all_feedback(client, users), [])

    subjects = _period_subjects(period)
    subject_ids = {str(s.get('_id')) for s in subjects}
    # Submissions without a type predate typed periods and count toward either
    records = [
        r for r in records
        if r.subject_id in subject_ids and r.feedback_type in (period.get('feedbackType'), None)
    ]
    per_subject = subject_summaries(records, subjects)

    graph_url = None
    rated = {s.get('name') or s.get('code') or str(s.get('_id')): summary.average_rating
             for s, summary in per_subject if summary.total_responses}
    if rated:
        graph_url = to_data_uri(ratings_bar_chart(rated, period.get('title') or 'Feedback Period',
                                                  ylabel='Subject'))

    return render_template('admin_period_stats.html',
                           period=period,
                           summary=summarize(records),
                           per_subject=per_subject,
                           days_remaining=days_remaining(period),
                           graph_url=graph_url)


def _find_period(client, period_id):
    all_periods = fetch_or_flash(lambda: client.get_list(ENDPOINTS['all_periods']), [])
    return next((p for p in all_periods if isinstance(p, dict) and str(p.get('_id')) == period_id), None)


def _period_subjects(period):
    subjects = period.get('subjects')
    if not isinstance(subjects, list):
        return []
    return [s for s in subjects if isinstance(s, dict) and s.get('_id')]


def _period_choices():
    return {
        'feedback_types': list(FEEDBACK_TYPES),
        'terms': PERIOD_TERMS,
        'statuses': PERIOD_STATUSES,
        'actions': PERIOD_ACTIONS,
        'branches': BRANCHES,
        'years': YEARS,
        'default_academic_year': DEFAULT_ACADEMIC_YEAR,
    }


def _subject_rows(records):
    """Per-subject summaries keyed by subject id for linking to the detail page."""
    by_subject = {}
    for record in records:
        by_subject.setdefault(record.subject_id, []).append(record)
    rows = []
    for subject_id, members in by_subject.items():
        first = members[0]
        rows.append({
            'id': subject_id,
            'name': first.subject_name or subject_id,
            'code': first.subject_code,
            'instructor': first.instructor,
            'summary': summarize(members),
        })
    rows.sort(key=lambda row: (-row['summary'].average_rating, str(row['name'])))
    return rows


def _user_payload(form, require_password):
    errors = []
    payload = {
        'name': (form.get('name') or '').strip(),
        'email': (form.get('email') or '').strip().lower(),
        'role': (form.get('role') or '').strip(),
    }
    if not payload['name']:
        errors.append("Name is required.")
    if not payload['email'] or '@' not in payload['email']:
        errors.append("A valid email is required.")
    if payload['role'] not in ROLES:
        errors.append("Please select a valid role.")

    password = form.get('password') or ''
    if require_password and len(password) < 6:
        errors.append("Password must be at least 6 characters.")
    if password:
        payload['password'] = password

    branch = (form.get('branch') or '').strip()
    if branch:
        if branch not in BRANCHES:
            errors.append("Please select a valid branch.")
        payload['branch'] = branch

    roll_number = (form.get('rollNumber') or '').strip()
    if roll_number:
        payload['rollNumber'] = roll_number

    year = (form.get('year') or '').strip()
    if year:
        try:
            payload['year'] = int(year)
        except ValueError:
            errors.append("Year must be a number.")
        else:
            if payload['year'] not in YEARS:
                errors.append("Year must be between 1 and 4.")
    return payload, errors


def _subject_payload(form):
    errors = []
    payload = {
        'name': (form.get('name') or '').strip(),
        'code': (form.get('code') or '').strip().upper(),
        'instructor': (form.get('instructor') or '').strip(),
        'department': (form.get('department') or '').strip(),
        'branch': (form.get('branch') or '').strip(),
    }
    for field in ('name', 'code', 'instructor'):
        if not payload[field]:
            errors.append(f"Subject {field} is required.")
    if payload['branch'] and payload['branch'] not in BRANCHES:
        errors.append("Please select a valid branch.")
    try:
        payload['semester'] = int(normalize_semester(form.get('semester')))
    except ValueError:
        errors.append("Semester must be a number.")
    else:
        if payload['semester'] not in TERMS:
            errors.append("Semester must be between 1 and 8.")
    return payload, errors


def _period_payload(form):
    errors = []
    payload = {
        'title': (form.get('title') or '').strip(),
        'description': (form.get('description') or '').strip(),
        'feedbackType': (form.get('feedbackType') or '').strip(),
        'academicYear': (form.get('academicYear') or '').strip() or DEFAULT_ACADEMIC_YEAR,
        'subjects': [s for s in form.getlist('subjects') if s],
        'branches': [b for b in form.getlist('branches') if b],
    }
    if not payload['title']:
        errors.append("Title is required.")
    if not payload['description']:
        errors.append("Description is required.")
    if payload['feedbackType'] not in FEEDBACK_TYPES:
        errors.append("Please select a valid feedback type.")
    try:
        payload['term'] = int(form.get('term') or '')
    except ValueError:
        errors.append("Term must be a number.")
    else:
        if payload['term'] not in PERIOD_TERMS:
            errors.append("Term must be between 1 and 4.")

    if any(branch not in BRANCHES for branch in payload['branches']):
        errors.append("Please select valid branches.")
    try:
        payload['years'] = [int(year) for year in form.getlist('years') if year]
    except ValueError:
        errors.append("Years must be numbers.")
    else:
        if any(year not in YEARS for year in payload['years']):
            errors.append("Years must be between 1 and 4.")

    start = _parse_date(form.get('startDate'))
    end = _parse_date(form.get('endDate'))
    if start is None or end is None:
        errors.append("Start and end dates are required (YYYY-MM-DD).")
    elif start >= end:
        errors.append("End date must be after start date.")
    else:
        payload['startDate'] = start.isoformat()
        payload['endDate'] = end.isoformat()

    instructions = (form.get('instructions') or '').strip()
    if instructions:
        payload['instructions'] = instructions
    return payload, errors


def _parse_date(value):
    try:
        return datetime.strptime((value or '').strip(), '%Y-%m-%d').date()
    except ValueError:
        return None
