"""Shared fixtures: Flask test client and a fake backend behind httpx.MockTransport."""
import httpx
import pytest

from app import app as flask_app
from session import SESSION_KEY


class FakeBackend:
    """Serve canned JSON per (method, path) and record every request."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, body=None, status=200):
        self.routes[(method, path)] = (status, body)

    def handler(self, request):
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": f"No route for {key}"})
        status, body = self.routes[key]
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


def make_feedback(
    student_id,
    subject_id,
    ratings,
    *,
    branch="MCA Regular",
    year=1,
    term=1,
    subject_name="Data Structures",
    instructor="Dr. Rao",
    feedback_type="midterm",
    submitted_at="2024-09-10T10:00:00Z",
    comment=None,
    name=None,
):
    answers = [
        {"question": f"Q{i + 1}", "answer": rating, "type": "rating"}
        for i, rating in enumerate(ratings)
    ]
    if comment is not None:
        answers.append(
            {"question": "Suggestions", "answer": 0, "type": "comment", "comment": comment}
        )
    return {
        "_id": f"fb-{student_id}-{subject_id}-{feedback_type}",
        "student": {
            "_id": student_id,
            "name": name or f"Student {student_id}",
            "email": f"{student_id}@college.edu",
            "rollNumber": f"232P4R{student_id}",
            "branch": branch,
            "year": year,
        },
        "subject": {
            "_id": subject_id,
            "name": subject_name,
            "code": subject_id.upper(),
            "instructor": instructor,
            "term": term,
            "branch": branch,
        },
        "feedbackType": feedback_type,
        "term": term,
        "answers": answers,
        "submittedAt": submitted_at,
    }


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def app(backend):
    flask_app.config.update(
        TESTING=True,
        API_URL="http://backend.test",
        API_TRANSPORT=backend.transport,
    )
    yield flask_app
    flask_app.config.update(TESTING=False, API_TRANSPORT=None)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login_as(client):
    def _login(role, branch=None, user_id="u-1", name="Test User"):
        with client.session_transaction() as sess:
            sess[SESSION_KEY] = {
                "token": "test-token",
                "role": role,
                "user_id": user_id,
                "name": name,
                "branch": branch,
            }

    return _login
