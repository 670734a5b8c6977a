"""
Multi-tag filtering shared by every item type.

A selection of tag ids is matched against an item's tag set in one of two
modes: ANY keeps items sharing at least one selected tag, ALL keeps items that
carry every selected tag. An empty selection keeps everything.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from tagdash.errors import CredentialExpiredError, DashboardError
from tagdash.services.tag_store import CALENDAR, EMAIL, TIMELINE

logger = logging.getLogger(__name__)


class FilterMode(enum.Enum):
    ANY = 'any'
    ALL = 'all'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls((value or '').strip().lower())
        except ValueError:
            return cls.ANY


def parse_tag_ids(raw):
    """``"3,1,x,3"`` -> ``[3, 1]``; non-numeric entries are ignored."""
    if not raw:
        return []
    parts = raw.split(',') if isinstance(raw, str) else raw
    ids = []
    for part in parts:
        try:
            ids.append(int(str(part).strip()))
        except ValueError:
            continue
    return list(dict.fromkeys(ids))


def matches(item_tag_ids, selected, mode):
    selected = set(selected)
    if not selected:
        return True
    item_tag_ids = set(item_tag_ids)
    if FilterMode.parse(mode) is FilterMode.ALL:
        return selected <= item_tag_ids
    return bool(selected & item_tag_ids)


def filter_items(items, selected, mode, tag_ids_of=lambda item: item.tag_ids):
    """Items whose tags satisfy the selection, in their original order."""
    if not selected:
        return list(items)
    return [item for item in items if matches(tag_ids_of(item), selected, mode)]


def matches_text(project, query):
    """Case-insensitive substring match on title, description or any tag name."""
    needle = (query or '').lower()
    if not needle:
        return True
    haystacks = [project.title, project.description or ''] + [tag.name for tag in project.tags]
    return any(needle in text.lower() for text in haystacks)


def group_association_rows(rows):
    """Collect ``(item_id, tag_id)`` rows into ``{item_id: {tag_ids}}`` keyed in first-seen order."""
    grouped = {}
    for item_id, tag_id in rows:
        grouped.setdefault(item_id, set()).add(tag_id)
    return grouped


def select_item_ids(rows, selected, mode):
    # Group before testing: rows for one item can be spread across the result set.
    grouped = group_association_rows(rows)
    return [item_id for item_id, tag_ids in grouped.items() if matches(tag_ids, selected, mode)]


@dataclass
class DashboardFilterResult:
    emails: List = field(default_factory=list)
    calendar_events: List = field(default_factory=list)
    projects: List = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {
            'emails': [item.to_dict() for item in self.emails],
            'calendar_events': [item.to_dict() for item in self.calendar_events],
            'projects': [item.to_dict() for item in self.projects],
            'errors': self.errors,
        }


class TagFilter:
    def __init__(self, store, server_aggregate=False):
        self.store = store
        self.server_aggregate = server_aggregate

    def matching_item_ids(self, kind, selected, mode):
        selected = list(selected)
        if not selected:
            return []
        mode = FilterMode.parse(mode)
        if mode is FilterMode.ALL and self.server_aggregate:
            return self.store.item_ids_with_all_tags(kind, selected)
        rows = self.store.association_rows(kind, selected)
        return select_item_ids(rows, selected, mode)

    def filter_emails(self, email_reader, selected, mode):
        if not selected:
            page = email_reader.list_page()
            items, _ = email_reader.read_ids(page.message_ids)
            return items
        email_ids = self.matching_item_ids(EMAIL, selected, mode)
        return email_reader.read_fresh(email_ids)

    def filter_calendar_events(self, calendar_reader, selected, mode, time_min=None, time_max=None):
        events = calendar_reader.read_window(time_min, time_max)
        return filter_items(events, selected, mode)

    def filter_project_cards(self, project_reader, selected, mode, query=None):
        projects = [project for project in project_reader.read_all() if matches_text(project, query)]
        if not selected:
            return projects
        keep = set(self.matching_item_ids(TIMELINE, selected, mode))
        return [project for project in projects if project.id in keep]

    def filter_dashboard(self, selected, mode, email_reader=None, calendar_reader=None, project_reader=None):
        """Run each item type independently; one failing type doesn't hide the others."""
        result = DashboardFilterResult()
        jobs = (
            (EMAIL, 'emails', email_reader, self.filter_emails),
            (CALENDAR, 'calendar_events', calendar_reader, self.filter_calendar_events),
            (TIMELINE, 'projects', project_reader, self.filter_project_cards),
        )
        for kind, attr, reader, run in jobs:
            if reader is None:
                continue
            try:
                setattr(result, attr, run(reader, selected, mode))
            except CredentialExpiredError:
                raise
            except DashboardError as exc:
                logger.warning("Tag filter for %s failed: %s", kind, exc.message)
                result.errors[kind] = exc.message
        return result
