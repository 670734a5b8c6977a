"""
Google OAuth helper: builds the consent URL, exchanges the callback code for a
provider token and verifies the ID token that identifies the user.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import requests
from google.auth.transport.requests import Request
from google.oauth2 import id_token

logger = logging.getLogger(__name__)

SCOPES = [
    'openid',
    'https://www.googleapis.com/auth/userinfo.email',
    'https://www.googleapis.com/auth/userinfo.profile',
    'https://www.googleapis.com/auth/gmail.modify',
    'https://www.googleapis.com/auth/gmail.send',
    'https://www.googleapis.com/auth/gmail.compose',
    'https://www.googleapis.com/auth/gmail.labels',
    'https://www.googleapis.com/auth/calendar',
]


@dataclass
class ProviderCredentials:
    token: Optional[str]
    id_token: Optional[str]
    scope: str = ''


class GoogleOAuth:
    auth_uri = 'https://accounts.google.com/o/oauth2/v2/auth'
    token_uri = 'https://oauth2.googleapis.com/token'

    def __init__(self, client_id=None, client_secret=None, redirect_uri=None):
        self.client_id = client_id or os.getenv('GOOGLE_CLIENT_ID')
        self.client_secret = client_secret or os.getenv('GOOGLE_CLIENT_SECRET')
        self.redirect_uri = redirect_uri or os.getenv('GOOGLE_REDIRECT_URI', 'http://localhost:5000/auth/google/callback')
        self.scopes = list(SCOPES)

    @classmethod
    def from_config(cls, config):
        return cls(
            client_id=config.get('GOOGLE_CLIENT_ID'),
            client_secret=config.get('GOOGLE_CLIENT_SECRET'),
            redirect_uri=config.get('GOOGLE_REDIRECT_URI'),
        )

    @property
    def is_configured(self):
        return bool(self.client_id and self.client_secret)

    def get_authorization_url(self):
        """Get authorization URL for user to sign in"""
        state = os.urandom(32).hex()

        params = {
            'client_id': self.client_id,
            'response_type': 'code',
            'scope': ' '.join(self.scopes),
            'redirect_uri': self.redirect_uri,
            'state': state,
            'access_type': 'online',
            'include_granted_scopes': 'true',
            'prompt': 'consent'
        }

        return f"{self.auth_uri}?{urlencode(params)}", state

    def exchange_code_for_token(self, code):
        """Exchange authorization code for access token"""
        data = {
            'code': code,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'redirect_uri': self.redirect_uri,
            'grant_type': 'authorization_code'
        }
        try:
            response = requests.post(self.token_uri, data=data, timeout=15)
        except requests.RequestException:
            logger.exception("Exception while exchanging OAuth code for token")
            return None

        logger.debug("Token exchange status=%s", response.status_code)
        if response.status_code != 200:
            logger.warning("Token exchange failed (status=%s)", response.status_code)
            return None

        tokens = response.json()
        return ProviderCredentials(
            token=tokens.get('access_token'),
            id_token=tokens.get('id_token'),
            scope=tokens.get('scope', ''),
        )

    def get_user_info(self, credentials):
        """Verify the ID token and pull the user's identity out of it."""
        if not credentials or not credentials.id_token:
            return None
        if not self.client_id:
            logger.warning("Google OAuth client ID is not configured; cannot verify ID token.")
            return None
        try:
            info = id_token.verify_oauth2_token(
                credentials.id_token,
                Request(),
                self.client_id
            )
        except ValueError as exc:
            logger.warning("Invalid Google ID token: %s", exc)
            return None

        email = info.get('email')
        name = info.get('name') or (email.split('@')[0] if email else None)
        return {
            'id': info.get('sub'),
            'email': email,
            'name': name,
            'picture': info.get('picture')
        }
