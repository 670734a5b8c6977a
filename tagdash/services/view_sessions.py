import logging
import threading
import uuid

from flask import current_app, session
from flask_login import user_logged_in, user_logged_out

from tagdash.services.email_list import EmailListState

logger = logging.getLogger(__name__)

SESSION_KEY = 'view_session_id'


class ViewSessionRegistry:
    """Per-user, per-browser-session list state owned by the application."""

    extension_name = 'tagdash.view_sessions'

    def __init__(self):
        self._sessions = {}
        self._lock = threading.Lock()

    def init_app(self, app):
        app.extensions[self.extension_name] = self
        user_logged_in.connect(self._on_session_change, app)
        user_logged_out.connect(self._on_session_change, app)

    def _on_session_change(self, sender, user=None, **extra):
        if user is not None and getattr(user, 'id', None) is not None:
            self.discard_user(user.id)

    def get(self, user_id, session_id):
        key = (user_id, session_id)
        with self._lock:
            state = self._sessions.get(key)
            if state is None:
                state = EmailListState(user_id=user_id)
                self._sessions[key] = state
            return state

    def discard_user(self, user_id):
        with self._lock:
            stale = [key for key in self._sessions if key[0] == user_id]
            for key in stale:
                self._sessions.pop(key).reset()
        if stale:
            logger.debug("Dropped %s view session(s) for user %s", len(stale), user_id)
        return len(stale)

    def __len__(self):
        with self._lock:
            return len(self._sessions)


def get_registry(app=None):
    app = app or current_app
    return app.extensions[ViewSessionRegistry.extension_name]


def current_list_state(user_id):
    session_id = session.get(SESSION_KEY)
    if not session_id:
        session_id = uuid.uuid4().hex
        session[SESSION_KEY] = session_id
    return get_registry().get(user_id, session_id)
