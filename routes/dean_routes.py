import io
import logging
from collections import Counter

from flask import Blueprint, flash, g, redirect, render_template, request, send_file, url_for

from aggregator import (
    distribution_percentages, filter_by_criteria, group_summaries, instructor_performance,
    monthly_trends, summarize,
)
from charts import distribution_chart, ratings_bar_chart, to_data_uri
from client import ApiError, get_client
from config import BRANCHES, ENDPOINTS, MIN_INSTRUCTOR_FEEDBACKS, TERMS, TOP_SUBJECTS_LIMIT, YEARS
from filters import FilterCriteria
from session import role_required
from utils import GROUP_REPORT_HEADERS, csv_bytes, fetch_or_flash, group_report_rows, safe_filename

logger = logging.getLogger(__name__)

dean_bp = Blueprint('dean', __name__, url_prefix='/dean')

GROUP_OPTIONS = ('subject', 'branch', 'instructor')
USER_LIMIT = 10000


def _load_users(client):
    return fetch_or_flash(
        lambda: client.get_list(ENDPOINTS['dean_users'], key='users', limit=USER_LIMIT), [])


def _institution_feedback(client, users, subjects=None):
    """Feedback on every subject, with student details joined from *users*.

    The backend serves dean feedback one subject at a time.
    """
    if subjects is None:
        subjects = client.get_list(ENDPOINTS['dean_subjects'])
    return client.subject_feedback(ENDPOINTS['dean_feedback'], subjects, students=users)


def _students_per_branch(users):
    return Counter(u.get('branch') for u in users if u.get('role') == 'student' and u.get('branch'))


@dean_bp.route('/')
@role_required('dean')
def dashboard():
    with get_client(g.auth) as client:
        users = _load_users(client)
        subjects = fetch_or_flash(lambda: client.get_list(ENDPOINTS['dean_subjects']), [])
        records = fetch_or_flash(lambda: _institution_feedback(client, users, subjects), [])

    roles = Counter(u.get('role') for u in users)
    branches = group_summaries(records, 'branch', expected=_students_per_branch(users))
    top_subjects = [
        group for group in group_summaries(records, 'subject')
        if group.summary.total_responses >= MIN_INSTRUCTOR_FEEDBACKS
    ][:TOP_SUBJECTS_LIMIT]

    return render_template('dean_dashboard.html',
                           stats={
                               'students': roles.get('student', 0),
                               'faculty': roles.get('faculty', 0),
                               'hods': roles.get('hod', 0),
                               'subjects': len(subjects),
                               'feedbacks': len(records),
                           },
                           summary=summarize(records),
                           branches=branches,
                           top_subjects=top_subjects)


@dean_bp.route('/reports')
@role_required('dean')
def reports():
    criteria = FilterCriteria.from_args(request.args)
    group_by = request.args.get('group_by', 'subject')
    if group_by not in GROUP_OPTIONS:
        flash(f"Unknown grouping '{group_by}', showing subjects instead.", "info")
        group_by = 'subject'

    with get_client(g.auth) as client:
        users = _load_users(client)
        records = fetch_or_flash(lambda: _institution_feedback(client, users), [])

    records = filter_by_criteria(records, criteria)
    expected = _students_per_branch(users) if group_by == 'branch' else None
    groups = group_summaries(records, group_by, expected=expected)

    graph_url = None
    if groups:
        graph_url = to_data_uri(ratings_bar_chart(
            {group.key: group.summary.average_rating for group in groups},
            f'Average Rating by {group_by.title()}', ylabel=group_by.title()))

    return render_template('dean_reports.html',
                           groups=groups,
                           group_by=group_by,
                           group_options=GROUP_OPTIONS,
                           show_rate=group_by == 'branch',
                           summary=summarize(records),
                           graph_url=graph_url,
                           filters=criteria.to_args(),
                           branches=BRANCHES, terms=TERMS, years=YEARS)


@dean_bp.route('/reports/download')
@role_required('dean')
def download_report():
    criteria = FilterCriteria.from_args(request.args)
    group_by = request.args.get('group_by', 'subject')
    if group_by not in GROUP_OPTIONS:
        group_by = 'subject'
    try:
        with get_client(g.auth) as client:
            users = client.get_list(ENDPOINTS['dean_users'], key='users', limit=USER_LIMIT)
            records = _institution_feedback(client, users)
    except ApiError as exc:
        flash(str(exc), "danger")
        return redirect(url_for('dean.reports'))

    groups = group_summaries(filter_by_criteria(records, criteria), group_by)
    return send_file(
        io.BytesIO(csv_bytes(GROUP_REPORT_HEADERS, group_report_rows(groups))),
        mimetype='text/csv',
        as_attachment=True,
        download_name=f"dean_report_by_{safe_filename(group_by)}.csv",
    )


@dean_bp.route('/analytics')
@role_required('dean')
def analytics():
    criteria = FilterCriteria.from_args(request.args)
    with get_client(g.auth) as client:
        users = _load_users(client)
        records = fetch_or_flash(lambda: _institution_feedback(client, users), [])
    records = filter_by_criteria(records, criteria)

    summary = summarize(records)
    graph_url = None
    if summary.total_responses:
        graph_url = to_data_uri(distribution_chart(summary.distribution, 'Rating Distribution'))

    return render_template('dean_analytics.html',
                           summary=summary,
                           percentages=distribution_percentages(summary.distribution),
                           trends=monthly_trends(records),
                           instructors=instructor_performance(records, MIN_INSTRUCTOR_FEEDBACKS),
                           min_feedbacks=MIN_INSTRUCTOR_FEEDBACKS,
                           graph_url=graph_url,
                           filters=criteria.to_args(),
                           branches=BRANCHES, terms=TERMS, years=YEARS)
