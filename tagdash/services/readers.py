"""
Entity readers: fetch items from their source of truth, then left-join the
locally stored tags onto them.

Each reader returns its items in source order. Every item appears exactly once
and carries a ``tags`` list, empty when nothing is associated with it.
"""
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from tagdash.errors import StoreError
from tagdash.models import CustomCard, TimelineCard
from tagdash.services.tag_store import EmailRecord, TagInfo, store_errors
from tagdash.utils.calendar_client import event_bound
from tagdash.utils.dates import EPOCH, as_utc, format_list_date, parse_email_date, parse_rfc3339
from tagdash.utils.gmail_client import get_header, parse_sender

logger = logging.getLogger(__name__)

CALENDAR_WINDOW_PAST = timedelta(days=30)
CALENDAR_WINDOW_FUTURE = timedelta(days=90)

TAB_ALL = 'all'
TAB_UNREAD = 'unread'
TAB_STARRED = 'starred'
TAB_IMPORTANT = 'important'
TABS = (TAB_ALL, TAB_UNREAD, TAB_STARRED, TAB_IMPORTANT)


def _iso(value):
    return value.isoformat() if value else None


def _tags_dicts(tags):
    return [tag.to_dict() for tag in tags]


@dataclass
class EmailItem:
    id: str
    thread_id: str
    subject: str
    sender: str
    sender_address: str
    excerpt: str
    date: datetime
    read: bool
    starred: bool
    tags: List[TagInfo] = field(default_factory=list)

    @property
    def tag_ids(self):
        return {tag.id for tag in self.tags}

    def to_dict(self):
        return {
            'id': self.id,
            'thread_id': self.thread_id,
            'subject': self.subject,
            'sender': self.sender,
            'sender_address': self.sender_address,
            'excerpt': self.excerpt,
            'date': format_list_date(self.date),
            'timestamp': _iso(self.date),
            'read': self.read,
            'starred': self.starred,
            'tags': _tags_dicts(self.tags),
        }


@dataclass
class CalendarItem:
    id: str
    summary: str
    description: str
    location: str
    start: Optional[datetime]
    end: Optional[datetime]
    all_day: bool
    status: str
    html_link: Optional[str]
    created: Optional[datetime]
    updated: Optional[datetime]
    tags: List[TagInfo] = field(default_factory=list)

    @property
    def tag_ids(self):
        return {tag.id for tag in self.tags}

    @classmethod
    def from_event(cls, event):
        start = event.get('start') or {}
        return cls(
            id=event.get('id'),
            summary=event.get('summary') or '(No title)',
            description=event.get('description') or '',
            location=event.get('location') or '',
            start=event_bound(start),
            end=event_bound(event.get('end')),
            all_day=bool(start.get('date') and not start.get('dateTime')),
            status=event.get('status') or 'confirmed',
            html_link=event.get('htmlLink'),
            created=parse_rfc3339(event.get('created')),
            updated=parse_rfc3339(event.get('updated')),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'summary': self.summary,
            'description': self.description,
            'location': self.location,
            'start': _iso(self.start),
            'end': _iso(self.end),
            'all_day': self.all_day,
            'status': self.status,
            'html_link': self.html_link,
            'tags': _tags_dicts(self.tags),
        }


@dataclass
class ProjectItem:
    id: int
    title: str
    description: str
    start_date: datetime
    end_date: Optional[datetime]
    created_at: Optional[datetime]
    tags: List[TagInfo] = field(default_factory=list)

    @property
    def tag_ids(self):
        return {tag.id for tag in self.tags}

    @classmethod
    def from_model(cls, card):
        return cls(card.id, card.title, card.description or '', card.start_date, card.end_date, card.created_at)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'created_at': _iso(self.created_at),
            'tags': _tags_dicts(self.tags),
        }


@dataclass
class CustomCardItem:
    id: int
    title: str
    content: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    tags: List[TagInfo] = field(default_factory=list)

    @property
    def tag_ids(self):
        return {tag.id for tag in self.tags}

    @classmethod
    def from_model(cls, card):
        return cls(card.id, card.title, card.content or '', card.created_at, card.updated_at)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'tags': _tags_dicts(self.tags),
        }


def merge_tags(items, key, tags_by_id):
    """Left join ``tags_by_id`` onto ``items`` without dropping or reordering any."""
    return [dataclasses.replace(item, tags=list(tags_by_id.get(key(item), []))) for item in items]


def _degrade(action, fetch):
    """Run a tag-store read; a failure leaves the items untagged instead of failing the read."""
    try:
        return fetch()
    except StoreError as exc:
        logger.warning("Showing items without tags, could not %s: %s", action, exc.message)
        return {}


def build_email_item(message, record=None):
    headers = (message.get('payload') or {}).get('headers') or []
    sender, address = parse_sender(get_header(headers, 'From'))
    record = record or EmailRecord(message.get('id'))
    label_ids = message.get('labelIds')
    return EmailItem(
        id=message.get('id'),
        thread_id=message.get('threadId') or record.thread_id or '',
        subject=get_header(headers, 'Subject') or '(No Subject)',
        sender=sender,
        sender_address=address,
        excerpt=message.get('snippet') or '',
        date=parse_email_date(get_header(headers, 'Date')),
        read='UNREAD' not in label_ids if label_ids is not None else False,
        starred=record.is_starred,
        tags=list(record.tags),
    )


def placeholder_email_item(email_id, record=None):
    record = record or EmailRecord(email_id)
    return EmailItem(
        id=email_id,
        thread_id=record.thread_id or '',
        subject='(No Subject)',
        sender='Unknown Sender',
        sender_address='',
        excerpt='',
        date=EPOCH,
        read=True,
        starred=record.is_starred,
        tags=list(record.tags),
    )


class EmailReader:
    def __init__(self, gmail, store, page_size=20, search_max_results=50):
        self.gmail = gmail
        self.store = store
        self.page_size = page_size
        self.search_max_results = search_max_results

    def list_page(self, page_token=None, tab=TAB_ALL):
        label_ids = ['IMPORTANT'] if tab == TAB_IMPORTANT else None
        return self.gmail.list_messages(page_token=page_token, max_results=self.page_size, label_ids=label_ids)

    def search(self, query):
        return self.gmail.search_messages(query, max_results=self.search_max_results)

    def ids_for_tag_name(self, tag_name):
        return [email_id for email_id, _ in self.store.email_ids_by_tag_name(tag_name)]

    def store_data(self, email_ids):
        return _degrade('fetch email tags', lambda: self.store.fetch_email_data(email_ids))

    def read_ids(self, message_ids, cached=None):
        """Items for ``message_ids`` in order, fetching details only for uncached ids.

        Returns ``(items, new_entries)``; ``new_entries`` holds only the freshly
        built items so the caller can merge them into its cache.
        """
        cached = cached or {}
        missing = [mid for mid in dict.fromkeys(message_ids) if mid not in cached]
        new_entries = {}
        if missing:
            messages = self.gmail.fetch_message_details(missing)
            records = self.store_data([m['id'] for m in messages])
            for message in messages:
                new_entries[message['id']] = build_email_item(message, records.get(message['id']))
        items = []
        for mid in message_ids:
            item = cached.get(mid) or new_entries.get(mid)
            if item is not None:
                items.append(item)
        return items, new_entries

    def read_fresh(self, email_ids):
        """Items for ids found in the tag store; ids Gmail can't return keep a placeholder."""
        ids = list(dict.fromkeys(email_ids))
        if not ids:
            return []
        messages = {m['id']: m for m in self.gmail.fetch_message_details(ids)}
        records = self.store_data(ids)
        items = []
        for email_id in ids:
            message = messages.get(email_id)
            if message is not None:
                items.append(build_email_item(message, records.get(email_id)))
            else:
                items.append(placeholder_email_item(email_id, records.get(email_id)))
        return items


class CalendarReader:
    def __init__(self, calendar, store, calendar_id='primary'):
        self.calendar = calendar
        self.store = store
        self.calendar_id = calendar_id

    @staticmethod
    def default_window(now=None):
        now = now or datetime.now(timezone.utc)
        return now - CALENDAR_WINDOW_PAST, now + CALENDAR_WINDOW_FUTURE

    def _with_tags(self, events):
        items = [CalendarItem.from_event(event) for event in events if event.get('id')]
        tags = _degrade('fetch event tags', lambda: self.store.tags_for_events([i.id for i in items]))
        return merge_tags(items, lambda item: item.id, tags)

    def read_window(self, time_min=None, time_max=None):
        if time_min is None or time_max is None:
            default_min, default_max = self.default_window()
            time_min = time_min or default_min
            time_max = time_max or default_max
        events = self.calendar.list_events(as_utc(time_min), as_utc(time_max), calendar_id=self.calendar_id)
        return self._with_tags(events)

    def read_today(self):
        return self._with_tags(self.calendar.list_todays_events(calendar_id=self.calendar_id))


class ProjectCardReader:
    def __init__(self, store):
        self.store = store

    def read_all(self):
        with store_errors('fetch projects'):
            cards = (
                TimelineCard.query.filter_by(user_id=self.store.user_id)
                .order_by(TimelineCard.start_date, TimelineCard.id)
                .all()
            )
        items = [ProjectItem.from_model(card) for card in cards]
        tags = _degrade('fetch project tags', lambda: self.store.tags_for_timeline_cards([i.id for i in items]))
        return merge_tags(items, lambda item: item.id, tags)


class CustomCardReader:
    def __init__(self, store):
        self.store = store

    def read_all(self):
        with store_errors('fetch cards'):
            cards = (
                CustomCard.query.filter_by(user_id=self.store.user_id)
                .order_by(CustomCard.created_at.desc(), CustomCard.id.desc())
                .all()
            )
        items = [CustomCardItem.from_model(card) for card in cards]
        tags = _degrade('fetch card tags', lambda: self.store.tags_for_custom_cards([i.id for i in items]))
        return merge_tags(items, lambda item: item.id, tags)
