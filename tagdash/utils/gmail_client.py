import base64
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import List, Optional

from tagdash.errors import CredentialExpiredError, DashboardError, ValidationError
from tagdash.utils.google_api import GoogleApiClient

logger = logging.getLogger(__name__)

METADATA_HEADERS = ('Subject', 'From', 'Date')
_SENDER_PATTERN = re.compile(r'(.*)<(.*)>')


@dataclass
class MessagePage:
    message_ids: List[str] = field(default_factory=list)
    thread_ids: dict = field(default_factory=dict)
    next_page_token: Optional[str] = None
    result_size_estimate: int = 0


def get_header(headers, name):
    name = name.lower()
    for header in headers or []:
        if header.get('name', '').lower() == name:
            return header.get('value', '')
    return ''


def parse_sender(from_header):
    """Split a From header into (display name, address)."""
    if not from_header:
        return 'Unknown Sender', ''
    match = _SENDER_PATTERN.match(from_header)
    if match and match.group(1) and match.group(2):
        return match.group(1).strip().replace('"', ''), match.group(2).strip()
    if '@' in from_header:
        return from_header, from_header
    return from_header.strip().replace('"', ''), ''


def decode_body(encoded):
    if not encoded:
        return ''
    try:
        if isinstance(encoded, bytes):
            encoded_str = encoded.decode('utf-8', errors='ignore')
        else:
            encoded_str = encoded
        padding = '=' * (-len(encoded_str) % 4)
        decoded = base64.urlsafe_b64decode(encoded_str + padding)
        return decoded.decode('utf-8', errors='ignore')
    except (ValueError, TypeError):
        return ''


def find_best_body_part(part):
    """Return (mime_type, encoded data) of the best body part, preferring HTML."""
    if not part:
        return None, None
    mime_type = part.get('mimeType', '')
    data = (part.get('body') or {}).get('data')
    if mime_type == 'text/html' and data:
        return mime_type, data

    plain = (mime_type, data) if mime_type == 'text/plain' and data else (None, None)
    for child in part.get('parts') or []:
        child_type, child_data = find_best_body_part(child)
        if child_type == 'text/html':
            return child_type, child_data
        if child_type and not plain[0]:
            plain = (child_type, child_data)
    return plain


class GmailClient(GoogleApiClient):
    API_BASE = 'https://gmail.googleapis.com/gmail/v1/users/me'

    def __init__(self, access_token, session=None, max_workers=8):
        super().__init__(access_token, session=session)
        self.max_workers = max_workers

    def list_messages(self, page_token=None, max_results=20, label_ids=None, query=None):
        params = {'maxResults': max_results}
        if page_token:
            params['pageToken'] = page_token
        if label_ids:
            params['labelIds'] = list(label_ids)
        if query:
            params['q'] = query
        data = self._request('GET', 'messages', 'fetch email list', params=params)
        messages = data.get('messages') or []
        return MessagePage(
            message_ids=[m['id'] for m in messages],
            thread_ids={m['id']: m.get('threadId') for m in messages},
            next_page_token=data.get('nextPageToken'),
            result_size_estimate=data.get('resultSizeEstimate', 0),
        )

    def search_messages(self, query, max_results=50):
        return self.list_messages(max_results=max_results, query=query)

    def get_message_metadata(self, message_id):
        params = [('format', 'metadata')] + [('metadataHeaders', h) for h in METADATA_HEADERS]
        return self._request('GET', f'messages/{message_id}', f'fetch details for email {message_id}', params=params)

    def fetch_message_details(self, message_ids):
        """Fetch metadata for every id concurrently.

        Results keep the order of ``message_ids``. A message that fails for any
        reason other than expired credentials is dropped; a credential failure
        fails the whole batch.
        """
        if not message_ids:
            return []

        def fetch_one(message_id):
            try:
                return self.get_message_metadata(message_id)
            except CredentialExpiredError:
                raise
            except DashboardError as exc:
                logger.warning("Dropping email %s from batch: %s", message_id, exc.message)
                return None

        workers = max(1, min(self.max_workers, len(message_ids)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(fetch_one, message_ids))
        return [msg for msg in results if msg]

    def modify_labels(self, message_id, add=(), remove=()):
        payload = {'addLabelIds': list(add), 'removeLabelIds': list(remove)}
        return self._request('POST', f'messages/{message_id}/modify', f'update labels on email {message_id}', json=payload)

    def set_starred(self, message_id, starred):
        if starred:
            return self.modify_labels(message_id, add=['STARRED'])
        return self.modify_labels(message_id, remove=['STARRED'])

    def mark_read(self, message_id):
        return self.modify_labels(message_id, remove=['UNREAD'])

    def get_thread(self, thread_id):
        data = self._request('GET', f'threads/{thread_id}', f'fetch thread {thread_id}', params={'format': 'full'})
        messages = data.get('messages') or []
        messages.sort(key=lambda m: int(m.get('internalDate') or 0))
        data['messages'] = messages
        return data

    def send_message(self, to, subject, body, thread_id=None, extra_headers=None):
        if not to or not to.strip():
            raise ValidationError('Recipient is required', field='to')
        mime = MIMEText(body or '', 'plain', 'utf-8')
        mime['To'] = to.strip()
        mime['Subject'] = subject or ''
        for name, value in (extra_headers or {}).items():
            if value:
                mime[name] = value
        raw = base64.urlsafe_b64encode(mime.as_bytes()).decode('ascii').rstrip('=')
        payload = {'raw': raw}
        if thread_id:
            payload['threadId'] = thread_id
        return self._request('POST', 'messages/send', 'send email', json=payload)

    def send_reply(self, thread_id, body, original_message):
        headers = (original_message.get('payload') or {}).get('headers') or []
        reply_to = get_header(headers, 'Reply-To') or get_header(headers, 'From')
        _, address = parse_sender(reply_to)
        subject = get_header(headers, 'Subject')
        if not subject.lower().startswith('re:'):
            subject = f'Re: {subject}'
        original_id = get_header(headers, 'Message-ID') or get_header(headers, 'Message-Id')
        references = get_header(headers, 'References')
        references = f'{references} {original_id}'.strip() if original_id else references
        return self.send_message(
            address or reply_to,
            subject,
            body,
            thread_id=thread_id,
            extra_headers={'In-Reply-To': original_id, 'References': references},
        )
