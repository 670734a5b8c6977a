"""
Paginated email list with an identifier-keyed item cache.

:class:`EmailListState` belongs to one view session (one user in one browser
session). :class:`EmailListController` is built per request around it with
that request's Gmail reader.

Loads are tagged with a generation number. A load whose generation is no longer
current when it finishes is dropped without touching the state, so a slow
request can never overwrite the results of a newer one.
"""
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Tuple

from tagdash.errors import CredentialExpiredError, DashboardError, ValidationError
from tagdash.services.readers import TAB_ALL, TAB_STARRED, TAB_UNREAD, TABS
from tagdash.services.tag_filter import FilterMode, parse_tag_ids
from tagdash.services.tag_store import EMAIL

logger = logging.getLogger(__name__)

_UNSET = object()


class ViewMode(enum.Enum):
    PAGED = 'paged'
    SEARCHING = 'searching'
    LEGACY_TAG_VIEW = 'legacy_tag_view'
    MULTI_TAG_VIEW = 'multi_tag_view'


@dataclass(frozen=True)
class ViewParams:
    search_query: Optional[str] = None
    legacy_tag: Optional[str] = None
    filter_tags: Tuple[int, ...] = ()
    filter_mode: FilterMode = FilterMode.ANY
    tab: str = TAB_ALL

    @classmethod
    def from_args(cls, args):
        tab = (args.get('tab') or TAB_ALL).lower()
        return cls(
            search_query=(args.get('q') or '').strip() or None,
            legacy_tag=(args.get('tag') or args.get('priority') or '').strip() or None,
            filter_tags=tuple(parse_tag_ids(args.get('tags'))),
            filter_mode=FilterMode.parse(args.get('mode')),
            tab=tab if tab in TABS else TAB_ALL,
        )

    @property
    def mode(self):
        # The multi-tag filter wins over search, which wins over the single-tag view.
        if self.filter_tags:
            return ViewMode.MULTI_TAG_VIEW
        if self.search_query:
            return ViewMode.SEARCHING
        if self.legacy_tag:
            return ViewMode.LEGACY_TAG_VIEW
        return ViewMode.PAGED

    @property
    def filter_tags_param(self):
        if not self.filter_tags:
            return None
        return f"{','.join(str(t) for t in self.filter_tags)}:{self.filter_mode.value}"

    def to_dict(self):
        return {
            'q': self.search_query,
            'tag': self.legacy_tag,
            'tags': list(self.filter_tags),
            'mode': self.filter_mode.value,
            'tab': self.tab,
        }


@dataclass
class LoadResult:
    committed: bool
    generation: int
    snapshot: dict = field(default_factory=dict)


class EmailListState:
    def __init__(self, user_id=None):
        self.lock = threading.RLock()
        self.user_id = user_id
        self.cache = {}
        self.page_token = None
        self.next_page_token = None
        self.prev_page_tokens = []
        self.items = []
        self.selection = {}
        self.error = None
        self.loading = False
        self.params = ViewParams()
        self.mode = ViewMode.PAGED
        self.generation = 0
        self.last_key = None

    def reset(self):
        with self.lock:
            self.cache.clear()
            self.page_token = None
            self.next_page_token = None
            self.prev_page_tokens = []
            self.items = []
            self.selection = {}
            self.error = None
            self.loading = False
            self.params = ViewParams()
            self.mode = ViewMode.PAGED
            self.last_key = None
            # Invalidates anything still in flight.
            self.generation += 1

    def view_key(self):
        return (self.page_token, self.params.legacy_tag, self.params.search_query, self.params.filter_tags_param)

    def visible_items(self):
        tab = self.params.tab
        if tab == TAB_UNREAD:
            return [item for item in self.items if not item.read]
        if tab == TAB_STARRED:
            return [item for item in self.items if item.starred]
        return list(self.items)

    def snapshot(self):
        with self.lock:
            visible = self.visible_items()
            return {
                'mode': self.mode.value,
                'params': self.params.to_dict(),
                'items': [item.to_dict() for item in visible],
                'selection': list(self.selection),
                'all_selected': bool(visible) and all(item.id in self.selection for item in visible),
                'has_next_page': self.mode is ViewMode.PAGED and bool(self.next_page_token),
                'has_prev_page': self.mode is ViewMode.PAGED and bool(self.prev_page_tokens),
                'loading': self.loading,
                'error': self.error,
                'cached_count': len(self.cache),
            }


class EmailListController:
    def __init__(self, state, reader, tag_filter):
        self.state = state
        self.reader = reader
        self.tag_filter = tag_filter

    def _begin(self, params, page_token):
        state = self.state
        mode = params.mode
        if mode is not ViewMode.PAGED:
            page_token = None
            state.next_page_token = None
            state.prev_page_tokens = []
        elif state.mode is not ViewMode.PAGED or params.tab != state.params.tab:
            # Coming back to the paged list always starts from the first page.
            page_token = None
            state.prev_page_tokens = []
        elif page_token is _UNSET:
            page_token = state.page_token

        state.params = params
        state.mode = mode
        state.page_token = page_token
        key = state.view_key()
        clear_selection = key != state.last_key
        state.last_key = key
        state.generation += 1
        state.loading = True
        state.error = None
        return state.generation, clear_selection, dict(state.cache)

    def _fetch(self, params, page_token, cached):
        """Returns (items, new cache entries, replace existing entries, next page token)."""
        mode = params.mode
        if mode is ViewMode.MULTI_TAG_VIEW:
            email_ids = self.tag_filter.matching_item_ids(EMAIL, params.filter_tags, params.filter_mode)
            items = self.reader.read_fresh(email_ids)
            return items, {item.id: item for item in items}, True, None
        if mode is ViewMode.SEARCHING:
            page = self.reader.search(params.search_query)
            items, new_entries = self.reader.read_ids(page.message_ids, cached)
            return items, new_entries, False, None
        if mode is ViewMode.LEGACY_TAG_VIEW:
            items, new_entries = self.reader.read_ids(self.reader.ids_for_tag_name(params.legacy_tag), cached)
            return items, new_entries, False, None
        page = self.reader.list_page(page_token, tab=params.tab)
        items, new_entries = self.reader.read_ids(page.message_ids, cached)
        return items, new_entries, False, page.next_page_token

    def _fail(self, generation, exc, restore=None):
        with self.state.lock:
            if generation != self.state.generation:
                return False
            self.state.error = exc.message
            self.state.items = []
            self.state.loading = False
            if restore is not None:
                # A failed page turn leaves the cursor on the page it started from.
                self.state.page_token, self.state.last_key = restore
            return True

    def load(self, params=None, page_token=_UNSET, cursor_stack=None):
        """Load a view. ``cursor_stack`` replaces the previous-page stack once the load commits."""
        state = self.state
        with state.lock:
            params = params or state.params
            restore = (state.page_token, state.last_key) if cursor_stack is not None else None
            generation, clear_selection, cached = self._begin(params, page_token)
            page_token = state.page_token

        try:
            items, new_entries, replace, next_token = self._fetch(params, page_token, cached)
        except CredentialExpiredError as exc:
            self._fail(generation, exc, restore)
            raise
        except DashboardError as exc:
            if self._fail(generation, exc, restore):
                raise
            return LoadResult(False, generation, state.snapshot())

        with state.lock:
            if generation != state.generation:
                logger.debug("Discarding superseded email load %s (current %s)", generation, state.generation)
                return LoadResult(False, generation, state.snapshot())
            if replace:
                state.cache.update(new_entries)
            else:
                for email_id, item in new_entries.items():
                    state.cache.setdefault(email_id, item)
            state.items = [state.cache.get(item.id, item) for item in items]
            if params.mode is ViewMode.PAGED:
                state.next_page_token = next_token
                if cursor_stack is not None:
                    state.prev_page_tokens = cursor_stack
            if clear_selection:
                state.selection = {}
            state.loading = False
        return LoadResult(True, generation, state.snapshot())

    def next_page(self):
        with self.state.lock:
            if self.state.mode is not ViewMode.PAGED or not self.state.next_page_token:
                raise ValidationError('There is no next page')
            stack = self.state.prev_page_tokens + [self.state.page_token or '']
            token = self.state.next_page_token
        return self.load(self.state.params, page_token=token, cursor_stack=stack)

    def prev_page(self):
        with self.state.lock:
            if self.state.mode is not ViewMode.PAGED or not self.state.prev_page_tokens:
                raise ValidationError('There is no previous page')
            stack = self.state.prev_page_tokens[:-1]
            token = self.state.prev_page_tokens[-1] or None
        return self.load(self.state.params, page_token=token, cursor_stack=stack)

    def refresh(self):
        """Drop every cached item and reload from the first page."""
        with self.state.lock:
            self.state.cache.clear()
            self.state.prev_page_tokens = []
            self.state.next_page_token = None
        return self.load(self.state.params, page_token=None)

    def select(self, email_ids):
        with self.state.lock:
            for email_id in email_ids:
                self.state.selection[email_id] = True
            return list(self.state.selection)

    def deselect(self, email_ids):
        with self.state.lock:
            for email_id in email_ids:
                self.state.selection.pop(email_id, None)
            return list(self.state.selection)

    def select_all(self):
        with self.state.lock:
            self.state.selection = {item.id: True for item in self.state.visible_items()}
            return list(self.state.selection)

    def clear_selection(self):
        with self.state.lock:
            self.state.selection = {}
            return []
