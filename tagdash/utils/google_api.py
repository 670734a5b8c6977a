"""
Shared plumbing for the Google REST clients: an authenticated
``requests.Session`` and the mapping from HTTP failures to dashboard errors.
"""
import logging

import requests

from tagdash.errors import CredentialExpiredError, RemoteServiceError

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = (401, 403)


def error_message_from(response, fallback):
    try:
        data = response.json() or {}
    except ValueError:
        return fallback
    error = data.get('error') if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get('message'):
        return error['message']
    if isinstance(error, str) and error:
        return data.get('error_description') or error
    return fallback


def raise_for_google_status(response, action):
    """Raise the dashboard error matching a non-2xx Google API response."""
    if 200 <= response.status_code < 300:
        return
    if response.status_code in AUTH_FAILURE_STATUSES:
        raise CredentialExpiredError()
    message = error_message_from(response, f'Failed to {action} (status {response.status_code})')
    raise RemoteServiceError(message, status=response.status_code)


class GoogleApiClient:
    API_BASE = ''

    def __init__(self, access_token, session=None):
        if not access_token:
            raise CredentialExpiredError()
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {access_token}',
            'Accept': 'application/json'
        })

    def _request(self, method, path, action, **kwargs):
        url = path if path.startswith('http') else f'{self.API_BASE}/{path.lstrip("/")}'
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            logger.warning("Network error while trying to %s: %s", action, exc)
            raise RemoteServiceError(f'Failed to {action}: network error') from exc
        raise_for_google_status(resp, action)
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}
