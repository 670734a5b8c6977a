"""
Dashboard custom cards and timeline (project) cards.

Custom card changes are written together with their ``custom_cards_log`` row
in one transaction, so a card is never changed without its log entry.
"""
import logging
from datetime import datetime

from tagdash import db
from tagdash.errors import ValidationError
from tagdash.models import CustomCard, CustomCardLog, TimelineCard
from tagdash.services.readers import CustomCardItem, ProjectItem, merge_tags
from tagdash.services.tag_store import store_errors
from tagdash.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

# Marks an optional field the caller left out, as opposed to one set to None.
UNCHANGED = object()


def _clean_title(title, required=True):
    title = (title or '').strip()
    if required and not title:
        raise ValidationError('Title is required', field='title')
    if len(title) > 255:
        raise ValidationError('Title is too long', field='title')
    return title


def _parse_date(value, field):
    if isinstance(value, datetime):
        return as_utc(value).replace(tzinfo=None)
    if not value:
        raise ValidationError(f'{field.replace("_", " ").capitalize()} is required', field=field)
    raw = str(value).strip()
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f'Invalid {field.replace("_", " ")}', field=field) from exc
    return as_utc(parsed).replace(tzinfo=None)


class CustomCardService:
    def __init__(self, store):
        self.store = store
        self.user_id = store.user_id

    def _get(self, card_id):
        with store_errors('fetch card'):
            return CustomCard.query.filter_by(id=card_id, user_id=self.user_id).first()

    def _log(self, card_id, activity_type, title):
        db.session.add(CustomCardLog(
            user_id=self.user_id,
            card_id=card_id,
            activity_type=activity_type,
            title=title,
            activity_timestamp=utcnow(),
        ))

    def _item(self, card):
        item = CustomCardItem.from_model(card)
        return merge_tags([item], lambda i: i.id, self.store.tags_for_custom_cards([card.id]))[0]

    def create(self, title, content='', tag_ids=None):
        title = _clean_title(title)
        with store_errors('create card'):
            card = CustomCard(user_id=self.user_id, title=title, content=content or '')
            db.session.add(card)
            db.session.flush()
            if tag_ids:
                self.store.diff_custom_card_tags(card.id, tag_ids, commit=False)
            self._log(card.id, 'CREATED', title)
            db.session.commit()
        logger.info("User %s created card %s", self.user_id, card.id)
        return self._item(card)

    def update(self, card_id, title=None, content=None, tag_ids=None):
        """Update a card. ``tag_ids=None`` leaves its tags untouched."""
        card = self._get(card_id)
        if card is None:
            return None
        new_title = _clean_title(title) if title is not None else card.title
        with store_errors('update card'):
            card.title = new_title
            if content is not None:
                card.content = content
            card.updated_at = utcnow()
            if tag_ids is not None:
                self.store.diff_custom_card_tags(card.id, tag_ids, commit=False)
            self._log(card.id, 'UPDATED', new_title)
            db.session.commit()
        return self._item(card)

    def delete(self, card_id):
        card = self._get(card_id)
        if card is None:
            return False
        title = card.title
        with store_errors('delete card'):
            db.session.delete(card)
            self._log(card_id, 'DELETED', title)
            db.session.commit()
        logger.info("User %s deleted card %s", self.user_id, card_id)
        return True


class TimelineCardService:
    def __init__(self, store):
        self.store = store
        self.user_id = store.user_id

    def _get(self, card_id):
        with store_errors('fetch project'):
            return TimelineCard.query.filter_by(id=card_id, user_id=self.user_id).first()

    @staticmethod
    def _validate_range(start_date, end_date):
        if end_date is not None and end_date < start_date:
            raise ValidationError('End date cannot be before start date', field='end_date')

    def _item(self, card):
        item = ProjectItem.from_model(card)
        return merge_tags([item], lambda i: i.id, self.store.tags_for_timeline_cards([card.id]))[0]

    def create(self, title, start_date, end_date=None, description=None, tag_ids=None):
        title = _clean_title(title)
        start = _parse_date(start_date, 'start_date')
        end = _parse_date(end_date, 'end_date') if end_date else None
        self._validate_range(start, end)
        with store_errors('create project'):
            card = TimelineCard(
                user_id=self.user_id,
                title=title,
                description=description or '',
                start_date=start,
                end_date=end,
            )
            db.session.add(card)
            db.session.flush()
            if tag_ids:
                self.store.replace_timeline_card_tags(card.id, tag_ids, commit=False)
            db.session.commit()
        return self._item(card)

    def update(self, card_id, title=None, start_date=None, end_date=UNCHANGED, description=None, tag_ids=None):
        """Update a project. An empty ``end_date`` clears it; leaving it out keeps it."""
        card = self._get(card_id)
        if card is None:
            return None
        title = _clean_title(title) if title is not None else card.title
        start = _parse_date(start_date, 'start_date') if start_date is not None else card.start_date
        if end_date is UNCHANGED:
            end = card.end_date
        else:
            end = _parse_date(end_date, 'end_date') if end_date else None
        self._validate_range(start, end)
        with store_errors('update project'):
            card.title = title
            card.start_date = start
            card.end_date = end
            if description is not None:
                card.description = description
            if tag_ids is not None:
                self.store.replace_timeline_card_tags(card.id, tag_ids, commit=False)
            db.session.commit()
        return self._item(card)

    def set_tags(self, card_id, tag_ids):
        card = self._get(card_id)
        if card is None:
            return None
        self.store.replace_timeline_card_tags(card.id, tag_ids)
        return self._item(card)

    def delete(self, card_id):
        card = self._get(card_id)
        if card is None:
            return False
        with store_errors('delete project'):
            db.session.delete(card)
            db.session.commit()
        return True
