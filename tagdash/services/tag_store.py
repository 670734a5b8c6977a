"""
Per-user access to the tag store.

All reads and writes of tags, tag associations and activity logs go through
:class:`TagStore`. Join results are turned into :class:`TagInfo` values here so
callers never look at row shapes.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from tagdash import db
from tagdash.errors import StoreError, ValidationError
from tagdash.models import (
    CalendarEventTag,
    CustomCardLog,
    CustomCardTag,
    DEFAULT_TAGS,
    Email,
    EmailTag,
    MAX_TAGS_PER_TYPE,
    RemovedEmailTagLog,
    TAG_TYPES,
    Tag,
    TimelineCardTag,
)
from tagdash.models.tag import DEFAULT_TAG_COLOR
from tagdash.utils.dates import day_bounds, utcnow

logger = logging.getLogger(__name__)

EMAIL = 'email'
CALENDAR = 'calendar'
TIMELINE = 'timeline'
CUSTOM = 'custom'

# kind -> (association model, item id column, ordering timestamp column)
ASSOCIATIONS = {
    EMAIL: (EmailTag, EmailTag.email_id, EmailTag.tagged_at),
    CALENDAR: (CalendarEventTag, CalendarEventTag.event_id, CalendarEventTag.created_at),
    TIMELINE: (TimelineCardTag, TimelineCardTag.card_id, TimelineCardTag.created_at),
    CUSTOM: (CustomCardTag, CustomCardTag.card_id, CustomCardTag.created_at),
}


@dataclass(frozen=True)
class TagInfo:
    id: int
    name: str
    type: str
    color: str

    @classmethod
    def from_model(cls, tag):
        return cls(id=tag.id, name=tag.name, type=tag.type, color=tag.color or DEFAULT_TAG_COLOR)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'type': self.type, 'color': self.color}


@dataclass
class EmailRecord:
    email_id: str
    thread_id: Optional[str] = None
    is_starred: bool = False
    tags: List[TagInfo] = field(default_factory=list)


@dataclass(frozen=True)
class TagActivity:
    email_id: str
    tag: TagInfo
    timestamp: datetime
    log_id: Optional[int] = None


@contextmanager
def store_errors(action):
    """Turn SQLAlchemy failures into StoreError, rolling back the session first."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Tag store failed to %s: %s", action, exc)
        raise StoreError(f'Failed to {action}') from exc


class TagStore:
    def __init__(self, user_id):
        self.user_id = user_id

    def _commit(self, action):
        with store_errors(action):
            db.session.commit()

    def _tags_query(self):
        return Tag.query.filter_by(user_id=self.user_id)

    # Tags

    def list_tags(self, tag_type=None):
        with store_errors('fetch tags'):
            query = self._tags_query()
            if tag_type:
                query = query.filter_by(type=tag_type)
            tags = query.order_by(Tag.created_at, Tag.id).all()
        return [TagInfo.from_model(tag) for tag in tags]

    def get_tag(self, tag_id):
        with store_errors('fetch tag'):
            return self._tags_query().filter_by(id=tag_id).first()

    def owned_tag_ids(self, tag_ids):
        ids = {int(t) for t in tag_ids}
        if not ids:
            return set()
        with store_errors('fetch tags'):
            rows = self._tags_query().with_entities(Tag.id).filter(Tag.id.in_(ids)).all()
        return {row.id for row in rows}

    def create_tag(self, name, tag_type, color=None):
        name = (name or '').strip()
        if not name:
            raise ValidationError('Tag name is required', field='name')
        if len(name) > 80:
            raise ValidationError('Tag name is too long', field='name')
        if tag_type not in TAG_TYPES:
            raise ValidationError(f'Tag type must be one of: {", ".join(TAG_TYPES)}', field='type')

        with store_errors('create tag'):
            existing = self._tags_query().filter_by(type=tag_type).all()
        if len(existing) >= MAX_TAGS_PER_TYPE:
            raise ValidationError(f'You can have at most {MAX_TAGS_PER_TYPE} {tag_type} tags', field='type')
        if any(tag.name.lower() == name.lower() for tag in existing):
            raise ValidationError('Tag already exists', field='name')

        tag = Tag(user_id=self.user_id, name=name, type=tag_type, color=color or DEFAULT_TAG_COLOR)
        db.session.add(tag)
        self._commit('create tag')
        logger.info("User %s created %s tag %s", self.user_id, tag_type, tag.id)
        return TagInfo.from_model(tag)

    def delete_tag(self, tag_id):
        tag = self.get_tag(tag_id)
        if not tag:
            return False
        db.session.delete(tag)
        self._commit('delete tag')
        logger.info("User %s deleted tag %s", self.user_id, tag_id)
        return True

    def seed_default_tags(self):
        """Create the starter pin and priority tags for a user that has none."""
        with store_errors('fetch tags'):
            if self._tags_query().first():
                return 0
        created = 0
        for tag_type, entries in DEFAULT_TAGS.items():
            for name, color in entries:
                db.session.add(Tag(user_id=self.user_id, name=name, type=tag_type, color=color))
                created += 1
        self._commit('seed default tags')
        return created

    # Emails

    def _email_row(self, email_id, thread_id=None):
        email = Email.query.filter_by(user_id=self.user_id, email_id=email_id).first()
        if email is None:
            email = Email(user_id=self.user_id, email_id=email_id, thread_id=thread_id, is_starred=False)
            db.session.add(email)
        elif thread_id and not email.thread_id:
            email.thread_id = thread_id
        return email

    def get_or_create_email(self, email_id, thread_id=None):
        with store_errors('save email'):
            email = self._email_row(email_id, thread_id)
        self._commit('save email')
        return email

    def set_starred(self, email_id, starred, thread_id=None):
        with store_errors('update star'):
            email = self._email_row(email_id, thread_id)
            email.is_starred = bool(starred)
        self._commit('update star')

    def _require_tag(self, tag_id):
        tag = self.get_tag(tag_id)
        if tag is None:
            raise ValidationError('Unknown tag', field='tag_id')
        return tag

    def add_tag_to_email(self, email_id, tag_id, thread_id=None):
        self._require_tag(tag_id)
        with store_errors('tag email'):
            self._email_row(email_id, thread_id)
            link = EmailTag.query.filter_by(user_id=self.user_id, email_id=email_id, tag_id=tag_id).first()
            if link:
                return False
            now = utcnow()
            db.session.add(EmailTag(user_id=self.user_id, email_id=email_id, tag_id=tag_id, created_at=now, tagged_at=now))
        self._commit('tag email')
        return True

    def remove_tag_from_email(self, email_id, tag_id):
        with store_errors('untag email'):
            link = EmailTag.query.filter_by(user_id=self.user_id, email_id=email_id, tag_id=tag_id).first()
            if not link:
                return False
            db.session.delete(link)
            db.session.add(RemovedEmailTagLog(user_id=self.user_id, email_id=email_id, tag_id=tag_id))
        self._commit('untag email')
        return True

    def fetch_email_data(self, email_ids):
        ids = list(dict.fromkeys(email_ids))
        if not ids:
            return {}
        with store_errors('fetch email tags'):
            emails = Email.query.filter(Email.user_id == self.user_id, Email.email_id.in_(ids)).all()
            links = (
                db.session.query(EmailTag.email_id, Tag)
                .join(Tag, Tag.id == EmailTag.tag_id)
                .filter(EmailTag.user_id == self.user_id, EmailTag.email_id.in_(ids))
                .order_by(EmailTag.tagged_at, Tag.id)
                .all()
            )
        records = {
            email.email_id: EmailRecord(email.email_id, email.thread_id, bool(email.is_starred))
            for email in emails
        }
        for email_id, tag in links:
            records.setdefault(email_id, EmailRecord(email_id)).tags.append(TagInfo.from_model(tag))
        return records

    def email_ids_by_tag_name(self, tag_name):
        """(email_id, thread_id) pairs tagged with ``tag_name``, case-insensitive."""
        with store_errors('fetch emails by tag'):
            rows = (
                db.session.query(EmailTag.email_id, Email.thread_id)
                .join(Tag, Tag.id == EmailTag.tag_id)
                .outerjoin(Email, (Email.email_id == EmailTag.email_id) & (Email.user_id == EmailTag.user_id))
                .filter(EmailTag.user_id == self.user_id, func.lower(Tag.name) == (tag_name or '').lower())
                .order_by(EmailTag.tagged_at.desc())
                .all()
            )
        seen = {}
        for email_id, thread_id in rows:
            seen.setdefault(email_id, thread_id)
        return list(seen.items())

    def email_ids_tagged_today(self, day=None):
        start, end = day_bounds(day)
        with store_errors('fetch emails tagged today'):
            rows = (
                db.session.query(EmailTag.email_id)
                .filter(EmailTag.user_id == self.user_id, EmailTag.tagged_at >= start, EmailTag.tagged_at < end)
                .order_by(EmailTag.tagged_at.desc())
                .all()
            )
        return list(dict.fromkeys(row.email_id for row in rows))

    # Item tag maps

    def _tags_by_item(self, kind, item_ids):
        model, item_col, ts_col = ASSOCIATIONS[kind]
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return {}
        with store_errors(f'fetch {kind} tags'):
            rows = (
                db.session.query(item_col, Tag)
                .join(Tag, Tag.id == model.tag_id)
                .filter(model.user_id == self.user_id, item_col.in_(ids))
                .order_by(ts_col, Tag.id)
                .all()
            )
        result = {}
        for item_id, tag in rows:
            result.setdefault(item_id, []).append(TagInfo.from_model(tag))
        return result

    def tags_for_events(self, event_ids):
        return self._tags_by_item(CALENDAR, event_ids)

    def tags_for_timeline_cards(self, card_ids):
        return self._tags_by_item(TIMELINE, card_ids)

    def tags_for_custom_cards(self, card_ids):
        return self._tags_by_item(CUSTOM, card_ids)

    def set_tags_for_event(self, event_id, tag_ids):
        """Replace the tag set of a calendar event."""
        owned = self.owned_tag_ids(tag_ids)
        with store_errors('update event tags'):
            CalendarEventTag.query.filter_by(user_id=self.user_id, event_id=event_id).delete()
            for tag_id in sorted(owned):
                db.session.add(CalendarEventTag(user_id=self.user_id, event_id=event_id, tag_id=tag_id))
        self._commit('update event tags')
        return self.tags_for_events([event_id]).get(event_id, [])

    def delete_event_tags(self, event_id):
        with store_errors('delete event tags'):
            deleted = CalendarEventTag.query.filter_by(user_id=self.user_id, event_id=event_id).delete()
        self._commit('delete event tags')
        return deleted

    def replace_timeline_card_tags(self, card_id, tag_ids, commit=True):
        owned = self.owned_tag_ids(tag_ids)
        with store_errors('update project tags'):
            TimelineCardTag.query.filter_by(user_id=self.user_id, card_id=card_id).delete()
            for tag_id in sorted(owned):
                db.session.add(TimelineCardTag(user_id=self.user_id, card_id=card_id, tag_id=tag_id))
        if commit:
            self._commit('update project tags')

    def diff_custom_card_tags(self, card_id, tag_ids, commit=True):
        """Bring a custom card's tags to ``tag_ids``: removals first, then additions."""
        wanted = self.owned_tag_ids(tag_ids)
        with store_errors('update card tags'):
            current = {
                link.tag_id: link
                for link in CustomCardTag.query.filter_by(user_id=self.user_id, card_id=card_id).all()
            }
            for tag_id in set(current) - wanted:
                db.session.delete(current[tag_id])
            for tag_id in sorted(wanted - set(current)):
                db.session.add(CustomCardTag(user_id=self.user_id, card_id=card_id, tag_id=tag_id))
        if commit:
            self._commit('update card tags')

    # Filter support

    def association_rows(self, kind, tag_ids):
        """Every (item_id, tag_id) row touching the given tags, newest first."""
        model, item_col, ts_col = ASSOCIATIONS[kind]
        ids = {int(t) for t in tag_ids}
        if not ids:
            return []
        with store_errors(f'fetch {kind} tag associations'):
            rows = (
                db.session.query(item_col, model.tag_id)
                .filter(model.user_id == self.user_id, model.tag_id.in_(ids))
                .order_by(ts_col.desc())
                .all()
            )
        return [(item_id, tag_id) for item_id, tag_id in rows]

    def item_ids_with_all_tags(self, kind, tag_ids):
        """Items carrying every tag in ``tag_ids``, computed by the database."""
        model, item_col, ts_col = ASSOCIATIONS[kind]
        ids = {int(t) for t in tag_ids}
        if not ids:
            return []
        with store_errors(f'fetch {kind} tag associations'):
            rows = (
                db.session.query(item_col)
                .filter(model.user_id == self.user_id, model.tag_id.in_(ids))
                .group_by(item_col)
                .having(func.count(func.distinct(model.tag_id)) == len(ids))
                .order_by(func.max(ts_col).desc())
                .all()
            )
        return [row[0] for row in rows]

    # Activity

    def recent_email_tag_additions(self, limit):
        with store_errors('fetch tag activity'):
            rows = (
                db.session.query(EmailTag, Tag)
                .join(Tag, Tag.id == EmailTag.tag_id)
                .filter(EmailTag.user_id == self.user_id)
                .order_by(EmailTag.created_at.desc())
                .limit(limit)
                .all()
            )
        return [TagActivity(link.email_id, TagInfo.from_model(tag), link.created_at) for link, tag in rows]

    def recent_email_tag_removals(self, limit):
        with store_errors('fetch tag activity'):
            rows = (
                db.session.query(RemovedEmailTagLog, Tag)
                .join(Tag, Tag.id == RemovedEmailTagLog.tag_id)
                .filter(RemovedEmailTagLog.user_id == self.user_id)
                .order_by(RemovedEmailTagLog.removed_at.desc())
                .limit(limit)
                .all()
            )
        return [
            TagActivity(log.email_id, TagInfo.from_model(tag), log.removed_at, log_id=log.id)
            for log, tag in rows
        ]

    def recent_card_activity(self, limit):
        with store_errors('fetch card activity'):
            return (
                CustomCardLog.query.filter_by(user_id=self.user_id)
                .order_by(CustomCardLog.activity_timestamp.desc(), CustomCardLog.id.desc())
                .limit(limit)
                .all()
            )
