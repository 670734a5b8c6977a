from datetime import datetime, timezone
from unittest.mock import MagicMock

from tagdash.errors import StoreError
from tagdash.services.readers import (
    CalendarItem,
    CalendarReader,
    CustomCardReader,
    EmailReader,
    build_email_item,
    merge_tags,
)
from tagdash.services.tag_store import EmailRecord, TagInfo
from tagdash.utils.dates import EPOCH
from tests.fakes import FakeCalendar, FakeGmail, make_message

TRAVEL = TagInfo(1, 'Travel', 'pin', 'blue')
URGENT = TagInfo(2, 'Urgent', 'priority', 'red')


def test_merge_tags_is_a_total_left_join():
    items = [CalendarItem.from_event({'id': eid}) for eid in ('c', 'a', 'b')]
    merged = merge_tags(items, lambda item: item.id, {'a': [TRAVEL], 'zzz': [URGENT]})
    assert [item.id for item in merged] == ['c', 'a', 'b']
    assert [item.tags for item in merged] == [[], [TRAVEL], []]


def test_build_email_item_parses_headers():
    message = make_message('m1', subject='Trip', sender='"Ada L" <ada@example.com>', labels=('UNREAD',))
    item = build_email_item(message, EmailRecord('m1', is_starred=True, tags=[URGENT]))
    assert item.subject == 'Trip'
    assert item.sender == 'Ada L'
    assert item.sender_address == 'ada@example.com'
    assert item.read is False
    assert item.starred is True
    assert item.tags == [URGENT]
    assert item.date == datetime(2024, 5, 6, 10, 0, tzinfo=timezone.utc)


def test_build_email_item_defaults():
    message = {'id': 'm2', 'threadId': 't2', 'payload': {'headers': []}}
    item = build_email_item(message)
    assert item.subject == '(No Subject)'
    assert item.sender == 'Unknown Sender'
    assert item.date == EPOCH
    assert item.read is False
    assert item.tags == []


class TestEmailReader:
    def test_read_ids_fetches_only_uncached(self, store):
        gmail = FakeGmail([make_message('a'), make_message('b'), make_message('c')])
        reader = EmailReader(gmail, store)
        items, new_entries = reader.read_ids(['a', 'b'])
        assert gmail.detail_calls == [['a', 'b']]
        assert set(new_entries) == {'a', 'b'}

        cached = dict(new_entries)
        items, new_entries = reader.read_ids(['b', 'c', 'a'], cached)
        assert gmail.detail_calls[-1] == ['c']
        assert [item.id for item in items] == ['b', 'c', 'a']
        assert items[0] is cached['b']
        assert set(new_entries) == {'c'}

    def test_read_ids_skips_messages_gmail_could_not_return(self, store):
        gmail = FakeGmail([make_message('a'), make_message('b')])
        gmail.fail_ids = {'b'}
        items, _ = EmailReader(gmail, store).read_ids(['a', 'b'])
        assert [item.id for item in items] == ['a']

    def test_tag_store_failure_degrades_to_untagged(self):
        gmail = FakeGmail([make_message('a')])
        store = MagicMock()
        store.fetch_email_data.side_effect = StoreError('Failed to fetch email tags')
        items, _ = EmailReader(gmail, store).read_ids(['a'])
        assert [item.id for item in items] == ['a']
        assert items[0].tags == []

    def test_important_tab_uses_gmail_label(self, store):
        gmail = FakeGmail([make_message('a', labels=('IMPORTANT',)), make_message('b')])
        page = EmailReader(gmail, store).list_page(tab='important')
        assert gmail.list_calls[-1]['label_ids'] == ['IMPORTANT']
        assert page.message_ids == ['a']


class TestCalendarReader:
    def test_events_get_their_tags(self, store, pin):
        store.set_tags_for_event('ev2', [pin.id])
        calendar = FakeCalendar(events=[
            {'id': 'ev1', 'summary': 'Standup', 'start': {'dateTime': '2024-05-06T09:00:00Z'},
             'end': {'dateTime': '2024-05-06T09:15:00Z'}},
            {'id': 'ev2', 'start': {'date': '2024-05-07'}, 'end': {'date': '2024-05-08'}},
        ])
        events = CalendarReader(calendar, store).read_window()
        assert [e.id for e in events] == ['ev1', 'ev2']
        assert events[0].tags == []
        assert [t.id for t in events[1].tags] == [pin.id]
        assert events[1].summary == '(No title)'
        assert events[1].all_day is True
        assert events[0].start == datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)


def test_custom_cards_newest_first(store, pin):
    from tagdash.services.cards import CustomCardService
    service = CustomCardService(store)
    first = service.create('First')
    second = service.create('Second', tag_ids=[pin.id])
    cards = CustomCardReader(store).read_all()
    assert [c.id for c in cards] == [second.id, first.id]
    assert [t.name for t in cards[0].tags] == ['Travel']
    assert cards[1].tags == []
