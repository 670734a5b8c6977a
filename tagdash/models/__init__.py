from tagdash.models.user import User
from tagdash.models.tag import Tag, TAG_TYPES, MAX_TAGS_PER_TYPE, DEFAULT_TAGS
from tagdash.models.email import Email, EmailTag, RemovedEmailTagLog, CalendarEventTag
from tagdash.models.card import CustomCard, CustomCardTag, CustomCardLog, TimelineCard, TimelineCardTag

__all__ = [
    'User',
    'Tag',
    'TAG_TYPES',
    'MAX_TAGS_PER_TYPE',
    'DEFAULT_TAGS',
    'Email',
    'EmailTag',
    'RemovedEmailTagLog',
    'CalendarEventTag',
    'CustomCard',
    'CustomCardTag',
    'CustomCardLog',
    'TimelineCard',
    'TimelineCardTag',
]
