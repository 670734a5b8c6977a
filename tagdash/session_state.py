from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from flask_login import current_user

from tagdash.errors import CredentialExpiredError
from tagdash.models.user import CALENDAR_SCOPE, GMAIL_SCOPE


@dataclass(frozen=True)
class SessionState:
    """Snapshot of who is signed in and which Google services they granted."""

    user_id: Optional[int] = None
    email: Optional[str] = None
    provider_token: Optional[str] = None
    granted_scopes: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user):
        if user is None or not getattr(user, 'is_authenticated', False):
            return cls()
        token = user.google_access_token if user.is_google_connected else None
        return cls(
            user_id=user.id,
            email=user.email,
            provider_token=token,
            granted_scopes=user.scope_set,
        )

    @classmethod
    def current(cls):
        return cls.from_user(current_user)

    @property
    def is_authenticated(self):
        return self.user_id is not None

    @property
    def gmail_connected(self):
        return bool(self.provider_token) and GMAIL_SCOPE in self.granted_scopes

    @property
    def calendar_connected(self):
        return bool(self.provider_token) and CALENDAR_SCOPE in self.granted_scopes

    def require_provider_token(self):
        if not self.provider_token:
            raise CredentialExpiredError()
        return self.provider_token

    def to_dict(self):
        return {
            'authenticated': self.is_authenticated,
            'email': self.email,
            'gmail_connected': self.gmail_connected,
            'calendar_connected': self.calendar_connected,
        }
