import random
from dataclasses import dataclass, field

import pytest

from tagdash.errors import CredentialExpiredError, RemoteServiceError
from tagdash.services.readers import CalendarReader, EmailReader, ProjectCardReader
from tagdash.services.tag_filter import (
    FilterMode,
    TagFilter,
    filter_items,
    group_association_rows,
    matches,
    parse_tag_ids,
    select_item_ids,
)
from tagdash.services.tag_store import EMAIL
from tests.fakes import FakeCalendar


@dataclass
class Item:
    id: str
    tag_ids: set = field(default_factory=set)


class TestMatches:
    def test_any_mode_needs_one_shared_tag(self):
        assert matches({1, 2}, {2, 3}, FilterMode.ANY)
        assert not matches({1}, {2, 3}, FilterMode.ANY)

    def test_all_mode_needs_every_selected_tag(self):
        assert matches({1, 2, 3}, {1, 3}, FilterMode.ALL)
        assert not matches({1, 2}, {1, 3}, FilterMode.ALL)

    def test_empty_selection_matches_everything(self):
        assert matches(set(), set(), FilterMode.ALL)
        assert matches({5}, [], 'any')

    def test_unknown_tag_never_matches_in_all_mode(self):
        assert not matches({1, 2}, {1, 999}, FilterMode.ALL)

    def test_mode_strings_parse(self):
        assert FilterMode.parse('ALL') is FilterMode.ALL
        assert FilterMode.parse('bogus') is FilterMode.ANY
        assert FilterMode.parse(None) is FilterMode.ANY


def test_parse_tag_ids_skips_junk_and_duplicates():
    assert parse_tag_ids('3, 1,x,3,') == [3, 1]
    assert parse_tag_ids(None) == []
    assert parse_tag_ids([2, '4']) == [2, 4]


def test_filter_items_keeps_order_and_passes_empty_selection():
    items = [Item('a', {1}), Item('b', {2}), Item('c', {1, 2})]
    assert filter_items(items, [], FilterMode.ALL) == items
    assert [i.id for i in filter_items(items, [2], FilterMode.ANY)] == ['b', 'c']
    assert [i.id for i in filter_items(items, [1, 2], FilterMode.ALL)] == ['c']


def test_all_mode_groups_interleaved_rows_before_filtering():
    # Rows for item "a" are not adjacent; filtering per row would lose it.
    rows = [('a', 1), ('b', 1), ('c', 2), ('a', 2), ('b', 3)]
    assert group_association_rows(rows) == {'a': {1, 2}, 'b': {1, 3}, 'c': {2}}
    assert select_item_ids(rows, [1, 2], FilterMode.ALL) == ['a']
    assert select_item_ids(rows, [1, 2], FilterMode.ANY) == ['a', 'b', 'c']


@pytest.mark.parametrize('seed', range(25))
def test_predicate_agrees_with_set_semantics(seed):
    rng = random.Random(seed)
    universe = list(range(1, 8))
    items = [Item(str(n), set(rng.sample(universe, rng.randint(0, 4)))) for n in range(12)]
    selected = set(rng.sample(universe + [99], rng.randint(0, 3)))

    any_result = filter_items(items, selected, FilterMode.ANY)
    all_result = filter_items(items, selected, FilterMode.ALL)

    if not selected:
        assert any_result == items
        assert all_result == items
        return
    assert any_result == [i for i in items if i.tag_ids & selected]
    assert all_result == [i for i in items if selected <= i.tag_ids]
    # ALL results are always a subset of ANY results.
    assert all(i in any_result for i in all_result)

    rows = [(i.id, t) for i in items for t in sorted(i.tag_ids) if t in selected]
    rng.shuffle(rows)
    grouped_all = set(select_item_ids(rows, selected, FilterMode.ALL))
    assert grouped_all == {i.id for i in all_result}


class TestStoreBackedFilter:
    def _tag_emails(self, store, pin, priority):
        store.add_tag_to_email('e1', pin.id)
        store.add_tag_to_email('e2', priority.id)
        store.add_tag_to_email('e3', pin.id)
        store.add_tag_to_email('e3', priority.id)

    def test_client_grouping_and_server_aggregate_agree(self, store, pin, priority):
        self._tag_emails(store, pin, priority)
        client_side = TagFilter(store)
        server_side = TagFilter(store, server_aggregate=True)
        for selected in ([pin.id], [pin.id, priority.id], [priority.id, 12345]):
            assert set(client_side.matching_item_ids(EMAIL, selected, 'all')) == \
                set(server_side.matching_item_ids(EMAIL, selected, 'all'))
        assert client_side.matching_item_ids(EMAIL, [pin.id, priority.id], 'all') == ['e3']
        assert set(client_side.matching_item_ids(EMAIL, [pin.id, priority.id], 'any')) == {'e1', 'e2', 'e3'}

    def test_empty_selection_returns_default_page(self, store, gmail):
        reader = EmailReader(gmail, store, page_size=2)
        items = TagFilter(store).filter_emails(reader, [], FilterMode.ANY)
        assert [i.id for i in items] == ['m1', 'm2']

    def test_filter_emails_reads_tagged_messages(self, store, gmail, pin):
        store.add_tag_to_email('m3', pin.id)
        store.add_tag_to_email('gone', pin.id)
        reader = EmailReader(gmail, store)
        items = TagFilter(store).filter_emails(reader, [pin.id], FilterMode.ANY)
        by_id = {item.id: item for item in items}
        assert set(by_id) == {'m3', 'gone'}
        assert by_id['m3'].subject == 'Concert tickets'
        # Gmail no longer has this one; it keeps its tags with placeholder fields.
        assert by_id['gone'].subject == '(No Subject)'
        assert [t.id for t in by_id['gone'].tags] == [pin.id]

    def test_project_filter_preserves_reader_order(self, store, pin, priority):
        from tagdash.services.cards import TimelineCardService
        service = TimelineCardService(store)
        late = service.create('Late', '2024-06-01', '2024-06-10', tag_ids=[pin.id])
        early = service.create('Early', '2024-01-01', '2024-01-10', tag_ids=[pin.id, priority.id])
        service.create('Untagged', '2024-03-01', '2024-03-02')

        result = TagFilter(store).filter_project_cards(ProjectCardReader(store), [pin.id], 'any')
        assert [p.id for p in result] == [early.id, late.id]
        result = TagFilter(store).filter_project_cards(ProjectCardReader(store), [pin.id, priority.id], 'all')
        assert [p.id for p in result] == [early.id]

    def test_project_text_search_runs_before_tag_filter(self, store, pin, priority):
        from tagdash.services.cards import TimelineCardService
        service = TimelineCardService(store)
        lisbon = service.create('Lisbon', '2024-01-01', tag_ids=[pin.id])
        notes = service.create('Quarterly report', '2024-02-01', description='Book TRAVEL budget')
        urgent = service.create('Taxes', '2024-03-01', tag_ids=[priority.id])
        reader = ProjectCardReader(store)
        tag_filter = TagFilter(store)

        result = tag_filter.filter_project_cards(reader, [], 'any', query='travel')
        assert [p.id for p in result] == [lisbon.id, notes.id]
        result = tag_filter.filter_project_cards(reader, [pin.id], 'any', query='Travel')
        assert [p.id for p in result] == [lisbon.id]
        result = tag_filter.filter_project_cards(reader, [], 'any', query='URG')
        assert [p.id for p in result] == [urgent.id]
        result = tag_filter.filter_project_cards(reader, [priority.id], 'all', query='lisbon')
        assert result == []
        assert len(tag_filter.filter_project_cards(reader, [], 'any', query='')) == 3

    def test_dashboard_collects_per_kind_errors(self, store, gmail, pin):
        calendar = FakeCalendar()
        calendar.error = RemoteServiceError('Calendar down', status=500)
        result = TagFilter(store).filter_dashboard(
            [pin.id],
            FilterMode.ANY,
            email_reader=EmailReader(gmail, store),
            calendar_reader=CalendarReader(calendar, store),
            project_reader=ProjectCardReader(store),
        )
        assert result.errors == {'calendar': 'Calendar down'}
        assert result.emails == []
        assert result.projects == []

    def test_dashboard_reraises_credential_expiry(self, store, gmail, pin):
        gmail.expired = True
        store.add_tag_to_email('m1', pin.id)
        with pytest.raises(CredentialExpiredError):
            TagFilter(store).filter_dashboard([pin.id], 'any', email_reader=EmailReader(gmail, store))
