"""
Optimistic edits to cached email items.

A command applies its change to the cached item right away, performs the
remote write, and on failure applies the inverse it computed from the item's
state before the change.
"""
import logging

from tagdash.errors import DashboardError, ValidationError
from tagdash.services.tag_store import TagInfo

logger = logging.getLogger(__name__)


class CacheMutation:
    def __init__(self, state, email_id, store):
        self.state = state
        self.email_id = email_id
        self.store = store
        self.item = None

    def apply(self, item):
        raise NotImplementedError

    def revert(self, item):
        raise NotImplementedError

    def write(self):
        raise NotImplementedError

    def run(self):
        self.prepare()
        # Store reads happen outside the list lock.
        record = None if self.email_id in self.state.cache else self.load_record()
        with self.state.lock:
            self.item = self.state.cache.get(self.email_id)
            self.capture(self.item, record)
            if self.is_noop():
                return self.item
            if self.item is not None:
                self.apply(self.item)
        try:
            self.write()
        except DashboardError as exc:
            logger.warning("Rolling back %s on email %s: %s", type(self).__name__, self.email_id, exc.message)
            if self.item is not None:
                with self.state.lock:
                    self.revert(self.item)
            raise
        return self.item

    def prepare(self):
        """Validation that must pass before anything changes."""

    def load_record(self):
        """Stored state of an email that is not in the cache."""
        return self.store.fetch_email_data([self.email_id]).get(self.email_id)

    def capture(self, item, record):
        """Record the pre-change state the inverse is computed from."""

    def is_noop(self):
        return False


class StarToggle(CacheMutation):
    def __init__(self, state, email_id, gmail, store, starred=None, thread_id=None):
        super().__init__(state, email_id, store)
        self.gmail = gmail
        self.requested = starred
        self.thread_id = thread_id
        self.before = None
        self.after = None

    def capture(self, item, record):
        if item is not None:
            self.before = item.starred
            self.thread_id = self.thread_id or item.thread_id
        else:
            self.before = bool(record and record.is_starred)
        self.after = (not self.before) if self.requested is None else bool(self.requested)

    def apply(self, item):
        item.starred = self.after

    def revert(self, item):
        item.starred = self.before

    def write(self):
        self.gmail.set_starred(self.email_id, self.after)
        try:
            self.store.set_starred(self.email_id, self.after, thread_id=self.thread_id)
        except DashboardError:
            try:
                self.gmail.set_starred(self.email_id, self.before)
            except DashboardError:
                logger.exception("Could not restore Gmail star on %s after store failure", self.email_id)
            raise


class TagToggle(CacheMutation):
    def __init__(self, state, email_id, tag_id, store, thread_id=None, tagged=None):
        super().__init__(state, email_id, store)
        self.tag_id = tag_id
        self.desired = tagged
        self.thread_id = thread_id
        self.tag = None
        self.was_tagged = None

    def prepare(self):
        tag = self.store.get_tag(self.tag_id)
        if tag is None:
            raise ValidationError('Unknown tag', field='tag_id')
        self.tag = TagInfo.from_model(tag)

    def capture(self, item, record):
        if item is not None:
            self.was_tagged = self.tag_id in item.tag_ids
            self.thread_id = self.thread_id or item.thread_id
        else:
            self.was_tagged = bool(record and any(t.id == self.tag_id for t in record.tags))

    def is_noop(self):
        return self.desired is not None and bool(self.desired) == self.was_tagged

    @property
    def added(self):
        return not self.was_tagged and not self.is_noop()

    def _remove(self, item):
        item.tags = [tag for tag in item.tags if tag.id != self.tag_id]

    def _add(self, item):
        if self.tag_id not in item.tag_ids:
            item.tags = item.tags + [self.tag]

    def apply(self, item):
        if self.was_tagged:
            self._remove(item)
        else:
            self._add(item)

    def revert(self, item):
        if self.was_tagged:
            self._add(item)
        else:
            self._remove(item)

    def write(self):
        if self.was_tagged:
            self.store.remove_tag_from_email(self.email_id, self.tag_id)
        else:
            self.store.add_tag_to_email(self.email_id, self.tag_id, thread_id=self.thread_id)
