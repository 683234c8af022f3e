"""Signed-in user context, passed explicitly to the API client and views."""
import logging
from dataclasses import asdict, dataclass
from functools import wraps
from typing import Optional

from flask import flash, g, redirect, session, url_for
from jose import JWTError, jwt

from config import ROLE_DASHBOARDS

logger = logging.getLogger(__name__)

SESSION_KEY = 'auth'


@dataclass(frozen=True)
class SessionContext:
    token: str
    role: str
    user_id: Optional[str] = None
    name: Optional[str] = None
    branch: Optional[str] = None

    @classmethod
    def from_login(cls, payload):
        """Build a context from the backend's login response.

        The role comes from the ``user`` object when the backend sends one,
        otherwise from the (unverified) JWT payload. The backend remains the
        authority on every request; this only decides which pages to show.
        """
        if not isinstance(payload, dict):
            raise ValueError('Login response was not a JSON object')
        token = payload.get('token')
        if not token:
            raise ValueError('Login response did not include a token')
        user = payload.get('user') or {}
        claims = decode_token_claims(token)
        role = user.get('role') or claims.get('role')
        if not role:
            raise ValueError('Could not determine the role for this account')
        return cls(
            token=token,
            role=role,
            user_id=user.get('_id') or user.get('id') or claims.get('id'),
            name=user.get('name'),
            branch=user.get('branch'),
        )

    def dashboard_endpoint(self):
        return ROLE_DASHBOARDS.get(self.role, 'login')


def decode_token_claims(token):
    """Return the JWT payload without verifying it, or {} if unreadable."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return {}
    return claims if isinstance(claims, dict) else {}


def save_session(context):
    session[SESSION_KEY] = asdict(context)


def clear_session():
    session.pop(SESSION_KEY, None)


def current_session():
    """Return the SessionContext for this request, or None if signed out."""
    data = session.get(SESSION_KEY)
    if not data:
        return None
    try:
        return SessionContext(**data)
    except TypeError:
        logger.warning('Discarding malformed session data')
        clear_session()
        return None


def role_required(*roles):
    """Restrict a view to signed-in users holding one of *roles*.

    The context is exposed to the view as ``g.auth``.
    """
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            context = current_session()
            if context is None:
                flash("Please log in to continue.", "danger")
                return redirect(url_for('login'))
            if roles and context.role not in roles:
                flash("You do not have access to that page.", "danger")
                return redirect(url_for(context.dashboard_endpoint()))
            g.auth = context
            return view(*args, **kwargs)
        return wrapped
    return decorator
