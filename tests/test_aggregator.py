"""Unit tests for the feedback aggregation functions."""
import random
from datetime import datetime, timezone

import pytest

from aggregator import (
    coerce_rating,
    comments,
    compute_average,
    compute_distribution,
    compute_response_rate,
    distribution_percentages,
    filter_by_criteria,
    group_summaries,
    instructor_performance,
    monthly_trends,
    question_averages,
    rating_values,
    record_average,
    response_rate_band,
    round_half_up,
    subject_summaries,
    submission_status,
    submitted_pairs,
    summarize,
    term_submission_rates,
)
from conftest import make_feedback
from filters import ALL, FilterCriteria, Value
from models import Answer, FeedbackRecord


def _ratings_record(ratings, **extra):
    return {"answers": [{"question": f"Q{i}", "answer": r, "type": "rating"} for i, r in enumerate(ratings)], **extra}


# ---------------------------------------------------------------------------
# Averages and distributions
# ---------------------------------------------------------------------------


def test_example_average_and_distribution():
    records = [_ratings_record([4, 5, 3, 4, 5])]

    assert compute_average(records) == 4.2
    assert compute_distribution(records) == {1: 0, 2: 0, 3: 1, 4: 2, 5: 2}


def test_ratings_flatten_across_records():
    records = [_ratings_record([4]), _ratings_record([5, 3]), _ratings_record([4, 5])]

    assert compute_average(records) == 4.2
    assert sum(compute_distribution(records).values()) == 5


def test_empty_input_is_neutral():
    assert compute_average([]) == 0
    assert compute_distribution([]) == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
    assert compute_response_rate(0, 0) == 0


def test_comments_and_unanswered_are_excluded():
    record = {
        "answers": [
            {"question": "Q1", "answer": 5, "type": "rating"},
            {"question": "Q2", "answer": 0, "type": "rating"},
            {"question": "Q3", "answer": 1, "type": "comment", "comment": "meh"},
        ]
    }

    assert compute_average([record]) == 5.0
    assert compute_distribution([record]) == {1: 0, 2: 0, 3: 0, 4: 0, 5: 1}


def test_answers_without_type_count_as_ratings():
    record = {"answers": [{"question": "Q1", "answer": 3}, {"question": "Q2", "answer": 4}]}

    assert compute_average([record]) == 3.5


def test_malformed_values_are_treated_as_unanswered():
    record = {
        "answers": [
            {"question": "Q1", "answer": 4},
            {"question": "Q2", "answer": None},
            {"question": "Q3", "answer": "abc"},
            {"question": "Q4"},
            {"question": "Q5", "answer": float("nan")},
            {"question": "Q6", "answer": True},
            "not-an-answer",
        ]
    }

    assert rating_values([record]) == [4.0]
    assert compute_average([record]) == 4.0


def test_numeric_strings_are_accepted():
    assert compute_average([_ratings_record(["4", " 2 "])]) == 3.0


def test_missing_answers_array():
    assert compute_average([{"answers": None}, {}]) == 0
    assert compute_distribution([{"answers": "oops"}]) == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}


def test_average_rounds_half_up():
    # Python's round() would give 4.2 here
    assert compute_average([_ratings_record([4.25])]) == 4.3
    assert compute_average([_ratings_record([1, 2])]) == 1.5


def test_distribution_rounds_ties_up_and_clamps():
    records = [_ratings_record([2.5, 4.4, 0.6, 7, 1.49])]

    assert compute_distribution(records) == {1: 2, 2: 0, 3: 1, 4: 1, 5: 1}


def test_out_of_scale_ratings_count_as_five():
    records = [_ratings_record([7, 3])]

    assert compute_average(records) == 4.0
    assert question_averages(records) == [("Q0", 5.0, 1), ("Q1", 3.0, 1)]


def test_huge_ratings_do_not_raise():
    assert coerce_rating(10 ** 400) == 0.0
    assert compute_average([_ratings_record([10 ** 400, 4])]) == 4.0
    assert compute_average([_ratings_record([1e30])]) == 5.0
    # the sum of these overflows to inf without clamping
    assert compute_average([_ratings_record([1e308, 1e308])]) == 5.0
    assert summarize([_ratings_record([1e308, 1e308])]).distribution[5] == 2


def test_round_half_up_handles_large_and_non_finite_values():
    assert round_half_up(1e30, 1) == 1e30
    assert round_half_up(2.5) == 3.0
    assert round_half_up(float("inf")) == float("inf")


def test_works_with_feedback_records():
    record = FeedbackRecord(
        answers=(
            Answer(question="Q1", answer=5),
            Answer(question="Q2", answer=3),
            Answer(question="Q3", answer=0, type="comment", comment="Great"),
        )
    )

    assert compute_average([record]) == 4.0
    assert record_average(record) == 4.0
    assert compute_distribution([record])[5] == 1


@pytest.mark.parametrize("seed", range(5))
def test_average_stays_within_scale(seed):
    rng = random.Random(seed)
    records = [_ratings_record([rng.randint(1, 5) for _ in range(rng.randint(1, 10))]) for _ in range(20)]

    assert 1 <= compute_average(records) <= 5


@pytest.mark.parametrize("seed", range(5))
def test_bucket_total_matches_answered_ratings(seed):
    rng = random.Random(seed)
    records = [
        {
            "answers": [
                {"question": "Q", "answer": rng.choice([0, 1, 2, 3, 4, 5, None, "x"]),
                 "type": rng.choice(["rating", "rating", "comment"])}
                for _ in range(8)
            ]
        }
        for _ in range(10)
    ]
    expected = sum(
        1
        for record in records
        for answer in record["answers"]
        if answer["type"] != "comment" and coerce_rating(answer["answer"]) > 0
    )

    assert sum(compute_distribution(records).values()) == expected


def test_aggregation_is_idempotent_and_pure():
    records = [_ratings_record([1, 2, 5]), _ratings_record([3])]
    snapshot = [dict(r) for r in records]

    assert compute_distribution(records) == compute_distribution(records)
    assert summarize(records) == summarize(records)
    assert records == snapshot


# ---------------------------------------------------------------------------
# Response rate
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "submitted, expected, rate",
    [
        (5, 10, 50),
        (12, 10, 100),
        (0, 0, 0),
        (3, 0, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (-1, 4, 0),
        (None, 4, 0),
        (10 ** 400, 4, 0),
        (1e308, 1e-300, 100),
    ],
)
def test_compute_response_rate(submitted, expected, rate):
    assert compute_response_rate(submitted, expected) == rate


@pytest.mark.parametrize("rate, band", [(100, "high"), (80, "high"), (79, "medium"), (60, "medium"), (59, "low"), (0, "low")])
def test_response_rate_band(rate, band):
    assert response_rate_band(rate) == band


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def _users():
    return [
        {"name": "Asha Nair", "email": "asha@college.edu", "rollNumber": "232P4R0001", "branch": "MCA Regular", "year": 1, "role": "student"},
        {"name": "Ravi Kumar", "email": "ravi@college.edu", "rollNumber": "232P4R0002", "branch": "MCA DS", "year": 2, "role": "student"},
        {"name": "Dr. Meena", "email": "meena@college.edu", "branch": "MCA Regular", "role": "faculty"},
        {"name": "Kiran", "email": "KIRAN@college.edu", "rollNumber": "232P4R0003", "branch": "MCA Regular", "year": 2, "role": "student"},
    ]


def test_filter_all_returns_same_elements_in_order():
    users = _users()
    result = filter_by_criteria(users, {"term": "all", "branch": "all", "year": "all", "search": ""})

    assert result == users
    assert result is not users


def test_filter_example_branch_only():
    result = filter_by_criteria(_users(), {"branch": "MCA Regular", "term": "all", "year": "all", "search": ""})

    assert [u["name"] for u in result] == ["Asha Nair", "Dr. Meena", "Kiran"]


def test_filter_combines_dimensions_with_and():
    criteria = FilterCriteria(branch=Value("MCA Regular"), year=Value(2), role=Value("student"))

    assert [u["name"] for u in filter_by_criteria(_users(), criteria)] == ["Kiran"]


def test_filter_search_is_case_insensitive_substring():
    assert [u["name"] for u in filter_by_criteria(_users(), {"search": "kiran@"})] == ["Kiran"]
    assert [u["name"] for u in filter_by_criteria(_users(), {"search": "P4R000"})] == [
        "Asha Nair", "Ravi Kumar", "Kiran",
    ]
    assert filter_by_criteria(_users(), {"search": "nobody"}) == []


def test_filter_missing_field_does_not_match_value():
    # Faculty have no year, so a year filter excludes them
    assert all(u["role"] == "student" for u in filter_by_criteria(_users(), {"year": "2"}))


def test_filter_feedback_records_by_term_and_roll_number():
    records = [
        FeedbackRecord.from_dict(make_feedback("0001", "ds", [4], term=1)),
        FeedbackRecord.from_dict(make_feedback("0002", "ds", [4], term=2)),
        FeedbackRecord.from_dict(make_feedback("0003", "ds", [4], term=2)),
    ]

    result = filter_by_criteria(records, FilterCriteria(term=Value(2), search="232p4r0003"))

    assert [r.student_id for r in result] == ["0003"]


def test_filter_criteria_defaults_are_all():
    criteria = FilterCriteria()

    assert criteria.term is ALL and criteria.branch is ALL
    assert filter_by_criteria(_users(), criteria) == _users()


# ---------------------------------------------------------------------------
# Summaries and groupings
# ---------------------------------------------------------------------------


def test_summarize():
    records = [_ratings_record([4, 5]), _ratings_record([3])]
    summary = summarize(records, expected_count=4)

    assert summary.average_rating == 4.0
    assert summary.total_responses == 2
    assert summary.response_rate == 50
    assert summary.distribution == {1: 0, 2: 0, 3: 1, 4: 1, 5: 1}


def test_summarize_empty():
    summary = summarize([])

    assert summary.average_rating == 0
    assert summary.total_responses == 0
    assert summary.response_rate == 0
    assert summary.distribution == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}


def test_distribution_percentages():
    assert distribution_percentages({1: 0, 2: 0, 3: 1, 4: 2, 5: 0}) == {1: 0.0, 2: 0.0, 3: 33.3, 4: 66.7, 5: 0.0}
    assert distribution_percentages({1: 0, 2: 0, 3: 0, 4: 0, 5: 0}) == {1: 0.0, 2: 0.0, 3: 0.0, 4: 0.0, 5: 0.0}


def test_group_summaries_by_branch():
    records = [
        make_feedback("1", "ds", [5, 5], branch="MCA DS"),
        make_feedback("2", "ds", [3, 3], branch="MCA Regular"),
        make_feedback("3", "ds", [5, 4], branch="MCA Regular"),
        make_feedback("4", "ds", [2], branch=None),
    ]

    groups = group_summaries(records, "branch", expected={"MCA Regular": 4})

    assert [g.key for g in groups] == ["MCA DS", "MCA Regular", "Unknown"]
    regular = groups[1]
    assert regular.summary.average_rating == 3.8
    assert regular.summary.total_responses == 2
    assert regular.summary.response_rate == 50
    assert (regular.min_rating, regular.max_rating) == (3.0, 4.5)
    assert groups[0].summary.response_rate == 0


def test_group_summaries_rejects_unknown_key():
    with pytest.raises(ValueError):
        group_summaries([], "colour")


def test_instructor_performance_requires_minimum_feedbacks():
    records = [make_feedback(str(i), "ds", [4], instructor="Dr. Rao") for i in range(3)]
    records += [make_feedback(str(i), "os", [5], instructor="Dr. Iyer") for i in range(2)]

    groups = instructor_performance(records, min_feedbacks=3)

    assert [g.key for g in groups] == ["Dr. Rao"]
    assert groups[0].summary.average_rating == 4.0


def test_subject_summaries_keep_subject_order():
    records = [make_feedback("s1", "os", [2]), make_feedback("s2", "ds", [4, 5]), make_feedback("s3", "ml", [1])]
    subjects = [{"_id": "ds", "name": "Data Structures"}, {"_id": "os"}, {"_id": "cn"}]

    result = subject_summaries(records, subjects)

    assert [subject["_id"] for subject, _ in result] == ["ds", "os", "cn"]
    assert [(s.total_responses, s.average_rating) for _, s in result] == [(1, 4.5), (1, 2.0), (0, 0)]


def test_monthly_trends():
    records = [
        make_feedback("1", "ds", [4], submitted_at="2024-10-02T09:00:00Z"),
        make_feedback("2", "ds", [2], submitted_at="2024-09-15T09:00:00Z"),
        make_feedback("3", "ds", [4], submitted_at="2024-09-20T09:00:00+00:00"),
        make_feedback("4", "ds", [5], submitted_at=None),
    ]

    assert monthly_trends(records) == [("2024-09", 2, 3.0), ("2024-10", 1, 4.0)]


def test_monthly_trends_accepts_datetime_records():
    record = FeedbackRecord(
        answers=(Answer(question="Q", answer=3),),
        submitted_at=datetime(2025, 1, 5, tzinfo=timezone.utc),
    )

    assert monthly_trends([record]) == [("2025-01", 1, 3.0)]


def test_question_averages_and_comments():
    records = [
        make_feedback("1", "ds", [5, 3], comment="More examples please"),
        make_feedback("2", "ds", [4, 0], comment=""),
    ]

    assert question_averages(records) == [("Q1", 4.5, 2), ("Q2", 3.0, 1)]
    assert comments(records) == [("Suggestions", "More examples please")]


# ---------------------------------------------------------------------------
# Submission status
# ---------------------------------------------------------------------------


def test_submission_status_and_term_rates():
    students = [
        {"_id": "s1", "name": "A", "year": 1},
        {"_id": "s2", "name": "B", "year": 1},
        {"_id": "s3", "name": "C", "year": 2},
    ]
    subjects = [
        {"_id": "ds", "name": "Data Structures", "term": 1},
        {"_id": "os", "name": "Operating Systems", "semester": 3},
        {"_id": "xx", "name": "No term"},
    ]
    pairs = submitted_pairs([make_feedback("s1", "ds", [4]), make_feedback("s3", "os", [5])])

    rows = submission_status(students, subjects, pairs)

    assert [(r["student"]["_id"], r["subject"]["_id"], r["submitted"]) for r in rows] == [
        ("s1", "ds", True),
        ("s2", "ds", False),
        ("s3", "os", True),
    ]
    assert term_submission_rates(rows) == [(1, 1, 2, 50), (3, 1, 1, 100)]


def test_term_rates_empty():
    assert term_submission_rates([]) == []
