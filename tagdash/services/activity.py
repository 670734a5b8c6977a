"""
Unified activity feed over email tagging, custom cards and calendar changes.

Each source is capped on its own before the merge, then everything is sorted
newest first. Calendar entries are classified from event timestamps, which is a
best-effort guess: an event edited within a few seconds of its creation shows
up as created.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from tagdash.errors import CredentialExpiredError, DashboardError
from tagdash.utils.dates import as_utc, parse_rfc3339

logger = logging.getLogger(__name__)

EMAIL_TAG_ADDED = 'EMAIL_TAG_ADDED'
EMAIL_TAG_REMOVED = 'EMAIL_TAG_REMOVED'
CARD_CREATED = 'CARD_CREATED'
CARD_UPDATED = 'CARD_UPDATED'
CARD_DELETED = 'CARD_DELETED'
CALENDAR_EVENT_CREATED = 'CALENDAR_EVENT_CREATED'
CALENDAR_EVENT_UPDATED = 'CALENDAR_EVENT_UPDATED'
CALENDAR_EVENT_DELETED = 'CALENDAR_EVENT_DELETED'

CREATION_WINDOW = timedelta(seconds=5)


@dataclass
class TimelineEvent:
    id: str
    type: str
    timestamp: datetime
    data: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'timestamp': self.timestamp.isoformat(),
            'data': self.data,
        }


def classify_calendar_event(event):
    """Map a Calendar API event to (event type, timestamp), or None when undecidable."""
    created = parse_rfc3339(event.get('created'))
    updated = parse_rfc3339(event.get('updated'))
    if event.get('status') == 'cancelled':
        return (CALENDAR_EVENT_DELETED, updated) if updated else None
    if created and updated and (updated - created) < CREATION_WINDOW:
        return CALENDAR_EVENT_CREATED, created
    if updated:
        return CALENDAR_EVENT_UPDATED, updated
    return None


def email_tag_events(additions, removals):
    events = []
    for activity in additions:
        events.append(TimelineEvent(
            id=f'add-{activity.email_id}-{activity.tag.id}',
            type=EMAIL_TAG_ADDED,
            timestamp=as_utc(activity.timestamp),
            data={'email_id': activity.email_id, 'tag': activity.tag.to_dict()},
        ))
    for activity in removals:
        events.append(TimelineEvent(
            id=f'remove-{activity.log_id}',
            type=EMAIL_TAG_REMOVED,
            timestamp=as_utc(activity.timestamp),
            data={'email_id': activity.email_id, 'tag': activity.tag.to_dict()},
        ))
    return events


def card_events(logs):
    events = []
    for log in logs:
        events.append(TimelineEvent(
            id=f'card-log-{log.id}',
            type=f'CARD_{log.activity_type}',
            timestamp=as_utc(log.activity_timestamp),
            data={'card_id': log.card_id, 'title': log.title},
        ))
    return events


def calendar_events(raw_events):
    events = []
    for event in raw_events:
        classified = classify_calendar_event(event)
        if classified is None:
            continue
        event_type, timestamp = classified
        events.append(TimelineEvent(
            id=f"cal-{event.get('id')}-{timestamp.isoformat()}",
            type=event_type,
            timestamp=timestamp,
            data={
                'event_id': event.get('id'),
                'summary': event.get('summary') or '(No title)',
                'html_link': event.get('htmlLink'),
            },
        ))
    return events


def merge_feeds(*sources, limit=None):
    merged = [event for source in sources for event in source]
    merged.sort(key=lambda event: event.timestamp, reverse=True)
    return merged[:limit] if limit else merged


class ActivityAggregator:
    def __init__(self, store, calendar=None, limit=20, calendar_limit=10, calendar_id='primary'):
        self.store = store
        self.calendar = calendar
        self.limit = limit
        self.calendar_limit = calendar_limit
        self.calendar_id = calendar_id

    def email_tag_activity(self):
        return email_tag_events(
            self.store.recent_email_tag_additions(self.limit),
            self.store.recent_email_tag_removals(self.limit),
        )

    def card_activity(self):
        return card_events(self.store.recent_card_activity(self.limit))

    def calendar_activity(self):
        if self.calendar is None:
            return []
        try:
            raw = self.calendar.list_recent_activity(limit=self.calendar_limit, calendar_id=self.calendar_id)
        except CredentialExpiredError:
            raise
        except DashboardError as exc:
            logger.warning("Calendar activity unavailable: %s", exc.message)
            return []
        return calendar_events(raw)

    def feed(self, display_limit: Optional[int] = None):
        return merge_feeds(
            self.email_tag_activity(),
            self.card_activity(),
            self.calendar_activity(),
            limit=display_limit,
        )
