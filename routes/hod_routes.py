import io
import logging
from datetime import datetime

from flask import Blueprint, flash, g, redirect, render_template, request, send_file, url_for

from aggregator import (
    comments, distribution_percentages, filter_by_criteria, question_averages,
    record_average, submission_status, submitted_pairs, summarize, term_submission_rates,
)
from charts import distribution_chart, ratings_bar_chart, to_data_uri
from client import ApiError, get_client
from config import ENDPOINTS, TERMS
from filters import FilterCriteria
from session import role_required
from utils import csv_bytes, fetch_or_flash, safe_filename

logger = logging.getLogger(__name__)

hod_bp = Blueprint('hod', __name__, url_prefix='/hod')

ROSTER_LIMIT = 1000
RECENT_FEEDBACK_LIMIT = 5


def _load_branch_data(client):
    """Fetch the HOD's branch students, subjects and the feedback on those subjects.

    The backend serves HOD feedback one subject at a time, already limited
    to students of the HOD's branch.
    """
    students = fetch_or_flash(
        lambda: client.get_list(ENDPOINTS['hod_students'], key='students', limit=ROSTER_LIMIT), [])
    subjects = fetch_or_flash(lambda: client.get_list(ENDPOINTS['hod_subjects']), [])
    records = fetch_or_flash(
        lambda: client.subject_feedback(ENDPOINTS['hod_feedback'], subjects, students=students), [])
    return records, students, subjects


def _branch_feedback(client):
    """Branch feedback for the download views; ApiError propagates."""
    students = client.get_list(ENDPOINTS['hod_students'], key='students', limit=ROSTER_LIMIT)
    subjects = client.get_list(ENDPOINTS['hod_subjects'])
    return client.subject_feedback(ENDPOINTS['hod_feedback'], subjects, students=students)


def _subject_averages(records):
    """Return ``{'Staff (Subject)': average}`` ordered by subject name."""
    averages = {}
    for record in sorted(records, key=lambda r: str(r.subject_name or '')):
        key = f"{record.instructor or 'Unknown'} ({record.subject_name or record.subject_code or 'Unknown'})"
        averages.setdefault(key, []).append(record)
    return {key: summarize(members).average_rating for key, members in averages.items()}


@hod_bp.route('/')
@role_required('hod')
def dashboard():
    with get_client(g.auth) as client:
        records, students, subjects = _load_branch_data(client)

    status_rows = submission_status(students, subjects, submitted_pairs(records))
    summary = summarize(records, len(status_rows))
    recent = sorted(
        (r for r in records if r.submitted_at is not None),
        key=lambda r: r.submitted_at, reverse=True,
    )[:RECENT_FEEDBACK_LIMIT]

    return render_template('hod_dashboard.html',
                           branch=g.auth.branch,
                           stats={
                               'students': len(students),
                               'subjects': len(subjects),
                               'feedbacks': summary.total_responses,
                           },
                           summary=summary,
                           subject_averages=_subject_averages(records),
                           recent=[(r, record_average(r)) for r in recent])


@hod_bp.route('/reports')
@role_required('hod')
def reports():
    criteria = FilterCriteria.from_args(request.args)
    with get_client(g.auth) as client:
        records, _, _ = _load_branch_data(client)
    records = filter_by_criteria(records, criteria)

    if not records:
        return render_template('hod_report.html', branch=g.auth.branch, rows=[], graph_url=None,
                               averages="N/A", filters=criteria.to_args(), terms=TERMS,
                               date=datetime.now().strftime("%Y-%m-%d %H:%M"))

    by_subject = {}
    for record in records:
        by_subject.setdefault(record.subject_id, []).append(record)
    rows = []
    for subject_id, members in sorted(by_subject.items(), key=lambda item: str(item[1][0].subject_name or '')):
        rows.append({
            'id': subject_id,
            'staff': members[0].instructor,
            'subject': members[0].subject_name or members[0].subject_code,
            'summary': summarize(members),
        })

    averages = _subject_averages(records)
    graph_url = to_data_uri(ratings_bar_chart(averages, f'Average Ratings - {g.auth.branch or "Branch"}'))

    return render_template('hod_report.html',
                           branch=g.auth.branch,
                           rows=rows,
                           graph_url=graph_url,
                           averages=f"{summarize(records).average_rating:.2f}",
                           filters=criteria.to_args(),
                           terms=TERMS,
                           date=datetime.now().strftime("%Y-%m-%d %H:%M"))


@hod_bp.route('/reports/<subject_id>')
@role_required('hod')
def report_detail(subject_id):
    with get_client(g.auth) as client:
        records = fetch_or_flash(
            lambda: client.feedback(f"{ENDPOINTS['hod_feedback']}/{subject_id}"), [])
    if not records:
        flash("No feedback found for this subject.", "info")
        return redirect(url_for('hod.reports'))

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
                           back_url=url_for('hod.reports'))


@hod_bp.route('/feedback-status')
@role_required('hod')
def feedback_status():
    criteria = FilterCriteria.from_args(request.args)
    status = request.args.get('status', 'all')
    with get_client(g.auth) as client:
        records, students, subjects = _load_branch_data(client)

    students = filter_by_criteria(students, FilterCriteria(search=criteria.search))
    subjects = filter_by_criteria(subjects, FilterCriteria(term=criteria.term))
    rows = submission_status(students, subjects, submitted_pairs(records))
    term_rates = term_submission_rates(rows)

    if status == 'submitted':
        rows = [row for row in rows if row['submitted']]
    elif status == 'pending':
        rows = [row for row in rows if not row['submitted']]

    return render_template('hod_feedback_status.html',
                           branch=g.auth.branch,
                           rows=rows,
                           term_rates=term_rates,
                           status=status,
                           filters=criteria.to_args(),
                           terms=TERMS)


@hod_bp.route('/download_report')
@role_required('hod')
def download_report():
    criteria = FilterCriteria.from_args(request.args)
    try:
        with get_client(g.auth) as client:
            records = _branch_feedback(client)
    except ApiError as exc:
        flash(str(exc), "danger")
        return redirect(url_for('hod.reports'))
    records = filter_by_criteria(records, criteria)

    by_subject = {}
    for record in records:
        by_subject.setdefault((record.instructor or '', record.subject_name or ''), []).append(record)
    rows = []
    for (staff, subject), members in sorted(by_subject.items()):
        summary = summarize(members)
        rows.append([staff, subject, summary.total_responses, f"{summary.average_rating:.2f}"])

    filename = f"feedback_report_{safe_filename(g.auth.branch, *_term_part(criteria))}.csv"
    return send_file(
        io.BytesIO(csv_bytes(['Staff Name', 'Subject', 'Responses', 'Average Rating'], rows)),
        mimetype='text/csv',
        as_attachment=True,
        download_name=filename,
    )


@hod_bp.route('/download_graph')
@role_required('hod')
def download_graph():
    criteria = FilterCriteria.from_args(request.args)
    try:
        with get_client(g.auth) as client:
            records = _branch_feedback(client)
    except ApiError as exc:
        flash(str(exc), "danger")
        return redirect(url_for('hod.reports'))

    averages = _subject_averages(filter_by_criteria(records, criteria))
    if not averages:
        flash("No data available to generate graph.", "danger")
        return redirect(url_for('hod.reports', **criteria.to_args()))

    png = ratings_bar_chart(averages, f'Average Ratings - {g.auth.branch or "Branch"}', dpi=300)
    filename = f"ratings_graph_{safe_filename(g.auth.branch, *_term_part(criteria))}.png"
    return send_file(
        io.BytesIO(png),
        mimetype='image/png',
        as_attachment=True,
        download_name=filename,
    )


def _term_part(criteria):
    args = criteria.to_args()
    return [f"Term_{args['term']}"] if args['term'] != 'all' else []
