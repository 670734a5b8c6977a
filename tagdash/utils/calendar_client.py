import logging
from datetime import datetime, timedelta, timezone

from tagdash.errors import ValidationError
from tagdash.utils.dates import parse_rfc3339, to_rfc3339
from tagdash.utils.google_api import GoogleApiClient

logger = logging.getLogger(__name__)


def event_bound(value):
    """Start/end of an event as an aware datetime (all-day events use their date)."""
    if not value:
        return None
    if value.get('dateTime'):
        return parse_rfc3339(value['dateTime'])
    if value.get('date'):
        try:
            return datetime.fromisoformat(value['date']).replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


def validate_event_payload(payload):
    if not payload:
        raise ValidationError('Event data is required')
    if not (payload.get('summary') or '').strip():
        raise ValidationError('Event title is required', field='summary')
    start = event_bound(payload.get('start'))
    end = event_bound(payload.get('end'))
    if start is None or end is None:
        raise ValidationError('Event start and end are required', field='start')
    if end < start:
        raise ValidationError('Event end cannot be before its start', field='end')


class CalendarClient(GoogleApiClient):
    API_BASE = 'https://www.googleapis.com/calendar/v3/calendars'

    def _events_path(self, calendar_id, event_id=None):
        path = f'{calendar_id}/events'
        return f'{path}/{event_id}' if event_id else path

    def list_events(self, time_min, time_max, calendar_id='primary'):
        params = {
            'timeMin': to_rfc3339(time_min),
            'timeMax': to_rfc3339(time_max),
            'singleEvents': 'true',
            'orderBy': 'startTime',
        }
        data = self._request('GET', self._events_path(calendar_id), 'fetch calendar events', params=params)
        return data.get('items') or []

    def list_todays_events(self, calendar_id='primary', now=None):
        now = now or datetime.now(timezone.utc)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.list_events(start, start + timedelta(days=1), calendar_id=calendar_id)

    def list_recent_activity(self, limit=10, calendar_id='primary'):
        params = {
            'orderBy': 'updated',
            'showDeleted': 'true',
            'maxResults': limit,
        }
        data = self._request('GET', self._events_path(calendar_id), 'fetch calendar activity', params=params)
        return data.get('items') or []

    def create_event(self, payload, calendar_id='primary'):
        validate_event_payload(payload)
        return self._request('POST', self._events_path(calendar_id), 'create event', json=payload)

    def update_event(self, event_id, payload, calendar_id='primary'):
        """Replace an event; fields missing from ``payload`` are cleared."""
        validate_event_payload(payload)
        return self._request('PUT', self._events_path(calendar_id, event_id), 'update event', json=payload)

    def delete_event(self, event_id, calendar_id='primary'):
        self._request('DELETE', self._events_path(calendar_id, event_id), 'delete event')
        logger.info("Deleted calendar event %s", event_id)
        return True
