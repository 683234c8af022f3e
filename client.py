"""HTTP client for the feedback backend REST API."""
import logging

import httpx
from flask import current_app

import config
from models import FeedbackRecord, join_references

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """Raised when the backend cannot be reached or rejects a request."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class RemoteDataClient:
    """Thin JSON wrapper around :class:`httpx.Client`.

    The bearer token comes from the injected ``SessionContext``; the client
    never looks it up on its own. Use as a context manager so the
    underlying connection pool is closed after the request.
    """

    def __init__(self, base_url=config.API_URL, context=None, timeout=config.API_TIMEOUT,
                 transport=None):
        headers = {
            'Accept': 'application/json',
            'Cache-Control': 'no-cache',
        }
        if context is not None:
            headers['Authorization'] = f'Bearer {context.token}'
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._client.close()

    def get(self, path, **params):
        return self._request('GET', path, params=_clean_params(params))

    def post(self, path, payload):
        return self._request('POST', path, json=payload)

    def put(self, path, payload):
        return self._request('PUT', path, json=payload)

    def patch(self, path, payload):
        return self._request('PATCH', path, json=payload)

    def delete(self, path):
        return self._request('DELETE', path)

    def get_list(self, path, key=None, **params):
        """GET *path* and return a list, unwrapping ``{key: [...]}`` envelopes."""
        data = self.get(path, **params)
        if isinstance(data, dict) and key:
            data = data.get(key)
        if not isinstance(data, list):
            logger.warning('Expected a list from %s, got %s', path, type(data).__name__)
            return []
        return data

    def feedback(self, path, students=None, subjects=None, **params):
        """Fetch feedback JSON from *path* as FeedbackRecords.

        *students* and *subjects* are optional rosters used to fill in the
        references the backend leaves unpopulated.
        """
        items = [item for item in self.get_list(path, key='feedback', **params) if isinstance(item, dict)]
        return [FeedbackRecord.from_dict(item) for item in join_references(items, students, subjects)]

    def subject_feedback(self, path, subjects, students=None):
        """Collect feedback from ``<path>/<subject id>`` for every subject."""
        records = []
        for subject in subjects:
            subject_id = subject.get('_id') if isinstance(subject, dict) else None
            if not subject_id:
                continue
            records.extend(self.feedback(f'{path}/{subject_id}', students=students, subjects=[subject]))
        return records

    def _request(self, method, path, **kwargs):
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning('%s %s timed out: %s', method, path, exc)
            raise ApiError("The server took too long to respond. Please try again.") from exc
        except httpx.HTTPError as exc:
            logger.warning('%s %s failed: %s', method, path, exc)
            raise ApiError("Unable to connect to the server. Please check your connection.") from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning('%s %s returned %s: %s', method, path, response.status_code, message)
            raise ApiError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning('%s %s returned invalid JSON', method, path)
            raise ApiError("The server returned an invalid response.",
                           status_code=response.status_code) from exc


def get_client(context=None):
    """Build a client for the current Flask app and signed-in user."""
    return RemoteDataClient(
        base_url=current_app.config.get('API_URL', config.API_URL),
        context=context,
        timeout=current_app.config.get('API_TIMEOUT', config.API_TIMEOUT),
        transport=current_app.config.get('API_TRANSPORT'),
    )


def _clean_params(params):
    return {key: value for key, value in params.items() if value not in (None, '')}


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get('message'):
        return str(body['message'])
    return f"Request failed with status {response.status_code}."
