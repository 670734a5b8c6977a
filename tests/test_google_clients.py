import base64
from datetime import datetime, timezone
from email import message_from_bytes
from unittest.mock import patch

import pytest
import requests

from tagdash.errors import CredentialExpiredError, RemoteServiceError, ValidationError
from tagdash.utils.calendar_client import CalendarClient, event_bound, validate_event_payload
from tagdash.utils.gmail_client import GmailClient, decode_body, find_best_body_part, parse_sender
from tagdash.utils.google_oauth import GoogleOAuth, ProviderCredentials
from tests.fakes import make_response


def b64(text):
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip('=')


def sent_mime(session):
    raw = session.request.call_args.kwargs['json']['raw']
    return message_from_bytes(base64.urlsafe_b64decode(raw + '=' * (-len(raw) % 4)))


class TestHelpers:
    @pytest.mark.parametrize('header,expected', [
        ('"Ada L" <ada@example.com>', ('Ada L', 'ada@example.com')),
        ('ada@example.com', ('ada@example.com', 'ada@example.com')),
        ('', ('Unknown Sender', '')),
        ('Mailer Daemon', ('Mailer Daemon', '')),
    ])
    def test_parse_sender(self, header, expected):
        assert parse_sender(header) == expected

    def test_decode_body_handles_missing_padding(self):
        assert decode_body(b64('hi there')) == 'hi there'
        assert decode_body(None) == ''

    def test_find_best_body_part_prefers_html(self):
        payload = {
            'mimeType': 'multipart/alternative',
            'parts': [
                {'mimeType': 'text/plain', 'body': {'data': b64('plain')}},
                {'mimeType': 'multipart/related', 'parts': [
                    {'mimeType': 'text/html', 'body': {'data': b64('<p>html</p>')}},
                ]},
            ],
        }
        mime_type, data = find_best_body_part(payload)
        assert mime_type == 'text/html'
        assert decode_body(data) == '<p>html</p>'

    def test_find_best_body_part_falls_back_to_plain(self):
        payload = {'mimeType': 'multipart/mixed', 'parts': [
            {'mimeType': 'application/pdf', 'body': {'attachmentId': 'x'}},
            {'mimeType': 'text/plain', 'body': {'data': b64('plain')}},
        ]}
        assert find_best_body_part(payload) == ('text/plain', b64('plain'))


class TestGmailClient:
    def test_missing_token_is_expired(self, mock_session):
        with pytest.raises(CredentialExpiredError):
            GmailClient(None, session=mock_session)

    def test_sets_bearer_header(self, mock_session):
        GmailClient('tok', session=mock_session)
        assert mock_session.headers['Authorization'] == 'Bearer tok'

    def test_list_messages(self, mock_session):
        mock_session.request.return_value = make_response(200, {
            'messages': [{'id': 'a', 'threadId': 'ta'}, {'id': 'b', 'threadId': 'tb'}],
            'nextPageToken': 'next',
            'resultSizeEstimate': 40,
        })
        page = GmailClient('tok', session=mock_session).list_messages(page_token='p1', max_results=2, label_ids=['IMPORTANT'])
        assert page.message_ids == ['a', 'b']
        assert page.thread_ids == {'a': 'ta', 'b': 'tb'}
        assert page.next_page_token == 'next'
        method, url = mock_session.request.call_args.args
        assert (method, url) == ('GET', 'https://gmail.googleapis.com/gmail/v1/users/me/messages')
        assert mock_session.request.call_args.kwargs['params'] == {
            'maxResults': 2, 'pageToken': 'p1', 'labelIds': ['IMPORTANT']}

    def test_empty_mailbox(self, mock_session):
        mock_session.request.return_value = make_response(200, {'resultSizeEstimate': 0})
        page = GmailClient('tok', session=mock_session).search_messages('nothing')
        assert page.message_ids == []
        assert page.next_page_token is None
        assert mock_session.request.call_args.kwargs['params']['q'] == 'nothing'

    @pytest.mark.parametrize('status', [401, 403])
    def test_auth_failures_expire_credentials(self, mock_session, status):
        mock_session.request.return_value = make_response(status, {'error': {'message': 'nope'}})
        with pytest.raises(CredentialExpiredError) as excinfo:
            GmailClient('tok', session=mock_session).list_messages()
        assert excinfo.value.message == 'Google API token expired'

    def test_server_error_keeps_google_message(self, mock_session):
        mock_session.request.return_value = make_response(500, {'error': {'message': 'Backend Error'}})
        with pytest.raises(RemoteServiceError) as excinfo:
            GmailClient('tok', session=mock_session).list_messages()
        assert excinfo.value.message == 'Backend Error'
        assert excinfo.value.status == 500

    def test_network_error(self, mock_session):
        mock_session.request.side_effect = requests.ConnectionError('down')
        with pytest.raises(RemoteServiceError):
            GmailClient('tok', session=mock_session).list_messages()

    def test_fetch_details_keeps_order_and_drops_failures(self, mock_session):
        def respond(method, url, **kwargs):
            message_id = url.rsplit('/', 1)[-1]
            if message_id == 'bad':
                return make_response(404, {'error': {'message': 'Not Found'}})
            return make_response(200, {'id': message_id})

        mock_session.request.side_effect = respond
        client = GmailClient('tok', session=mock_session, max_workers=3)
        details = client.fetch_message_details(['c', 'bad', 'a', 'b'])
        assert [d['id'] for d in details] == ['c', 'a', 'b']
        assert client.fetch_message_details([]) == []

    def test_fetch_details_fails_whole_batch_on_expiry(self, mock_session):
        def respond(method, url, **kwargs):
            if url.endswith('/b'):
                return make_response(401)
            return make_response(200, {'id': url.rsplit('/', 1)[-1]})

        mock_session.request.side_effect = respond
        with pytest.raises(CredentialExpiredError):
            GmailClient('tok', session=mock_session).fetch_message_details(['a', 'b', 'c'])

    def test_set_starred_and_mark_read(self, mock_session):
        mock_session.request.return_value = make_response(200, {'id': 'a'})
        client = GmailClient('tok', session=mock_session)
        client.set_starred('a', True)
        assert mock_session.request.call_args.kwargs['json'] == {'addLabelIds': ['STARRED'], 'removeLabelIds': []}
        client.set_starred('a', False)
        assert mock_session.request.call_args.kwargs['json'] == {'addLabelIds': [], 'removeLabelIds': ['STARRED']}
        client.mark_read('a')
        assert mock_session.request.call_args.args[1].endswith('/messages/a/modify')
        assert mock_session.request.call_args.kwargs['json']['removeLabelIds'] == ['UNREAD']

    def test_thread_messages_sorted_oldest_first(self, mock_session):
        mock_session.request.return_value = make_response(200, {'id': 't', 'messages': [
            {'id': 'late', 'internalDate': '300'},
            {'id': 'early', 'internalDate': '100'},
            {'id': 'middle', 'internalDate': '200'},
        ]})
        thread = GmailClient('tok', session=mock_session).get_thread('t')
        assert [m['id'] for m in thread['messages']] == ['early', 'middle', 'late']

    def test_send_requires_recipient(self, mock_session):
        with pytest.raises(ValidationError):
            GmailClient('tok', session=mock_session).send_message('  ', 'Hi', 'Body')
        mock_session.request.assert_not_called()

    def test_send_message_encodes_mime(self, mock_session):
        mock_session.request.return_value = make_response(200, {'id': 's1', 'threadId': 't1'})
        result = GmailClient('tok', session=mock_session).send_message('bob@example.com', 'Hi', 'Body', thread_id='t1')
        assert result == {'id': 's1', 'threadId': 't1'}
        assert mock_session.request.call_args.kwargs['json']['threadId'] == 't1'
        mime = sent_mime(mock_session)
        assert mime['To'] == 'bob@example.com'
        assert mime['Subject'] == 'Hi'
        assert mime.get_payload(decode=True).decode() == 'Body'

    def test_send_reply_threads_headers(self, mock_session):
        mock_session.request.return_value = make_response(200, {'id': 's2'})
        original = {'payload': {'headers': [
            {'name': 'From', 'value': 'Ada <ada@example.com>'},
            {'name': 'Subject', 'value': 'Trip'},
            {'name': 'Message-ID', 'value': '<abc@mail>'},
        ]}}
        GmailClient('tok', session=mock_session).send_reply('t1', 'Sounds good', original)
        mime = sent_mime(mock_session)
        assert mime['To'] == 'ada@example.com'
        assert mime['Subject'] == 'Re: Trip'
        assert mime['In-Reply-To'] == '<abc@mail>'
        assert mime['References'] == '<abc@mail>'

    def test_reply_keeps_existing_re_prefix(self, mock_session):
        mock_session.request.return_value = make_response(200, {'id': 's3'})
        original = {'payload': {'headers': [
            {'name': 'From', 'value': 'ada@example.com'},
            {'name': 'Subject', 'value': 'RE: Trip'},
        ]}}
        GmailClient('tok', session=mock_session).send_reply('t1', 'ok', original)
        assert sent_mime(mock_session)['Subject'] == 'RE: Trip'


class TestCalendarClient:
    def test_event_bound(self):
        assert event_bound({'dateTime': '2024-05-06T09:00:00+02:00'}) == datetime(2024, 5, 6, 7, 0, tzinfo=timezone.utc)
        assert event_bound({'date': '2024-05-06'}) == datetime(2024, 5, 6, tzinfo=timezone.utc)
        assert event_bound({}) is None
        assert event_bound(None) is None

    @pytest.mark.parametrize('payload', [
        None,
        {'start': {'date': '2024-05-06'}, 'end': {'date': '2024-05-07'}},
        {'summary': 'x', 'start': {'date': '2024-05-06'}},
        {'summary': 'x', 'start': {'date': '2024-05-07'}, 'end': {'date': '2024-05-06'}},
    ])
    def test_invalid_event_payloads(self, payload):
        with pytest.raises(ValidationError):
            validate_event_payload(payload)

    def test_list_events_window(self, mock_session):
        mock_session.request.return_value = make_response(200, {'items': [{'id': 'ev1'}]})
        client = CalendarClient('tok', session=mock_session)
        start = datetime(2024, 5, 1, tzinfo=timezone.utc)
        end = datetime(2024, 5, 2, tzinfo=timezone.utc)
        assert client.list_events(start, end) == [{'id': 'ev1'}]
        method, url = mock_session.request.call_args.args
        assert url == 'https://www.googleapis.com/calendar/v3/calendars/primary/events'
        params = mock_session.request.call_args.kwargs['params']
        assert params['timeMin'] == '2024-05-01T00:00:00Z'
        assert params['timeMax'] == '2024-05-02T00:00:00Z'
        assert params['singleEvents'] == 'true'

    def test_recent_activity_includes_deleted(self, mock_session):
        mock_session.request.return_value = make_response(200, {})
        assert CalendarClient('tok', session=mock_session).list_recent_activity(limit=5) == []
        params = mock_session.request.call_args.kwargs['params']
        assert params == {'orderBy': 'updated', 'showDeleted': 'true', 'maxResults': 5}

    def test_create_validates_before_request(self, mock_session):
        with pytest.raises(ValidationError):
            CalendarClient('tok', session=mock_session).create_event({'summary': ''})
        mock_session.request.assert_not_called()

    def test_update_replaces_event(self, mock_session):
        mock_session.request.return_value = make_response(200, {'id': 'ev1'})
        payload = {'summary': 'Standup', 'start': {'dateTime': '2024-05-06T09:00:00Z'},
                   'end': {'dateTime': '2024-05-06T09:15:00Z'}}
        CalendarClient('tok', session=mock_session).update_event('ev1', payload)
        assert mock_session.request.call_args.args == (
            'PUT', 'https://www.googleapis.com/calendar/v3/calendars/primary/events/ev1')

    def test_delete_accepts_no_content(self, mock_session):
        mock_session.request.return_value = make_response(204)
        assert CalendarClient('tok', session=mock_session).delete_event('ev1') is True

    def test_expired_token_on_delete(self, mock_session):
        mock_session.request.return_value = make_response(401)
        with pytest.raises(CredentialExpiredError):
            CalendarClient('tok', session=mock_session).delete_event('ev1')


class TestGoogleOAuth:
    def test_authorization_url_carries_scopes_and_state(self):
        oauth = GoogleOAuth('cid', 'secret', 'http://localhost/cb')
        url, state = oauth.get_authorization_url()
        assert url.startswith('https://accounts.google.com/o/oauth2/v2/auth?')
        assert 'client_id=cid' in url
        assert f'state={state}' in url
        assert 'gmail.modify' in url
        assert oauth.is_configured

    def test_exchange_failure_returns_none(self):
        with patch('tagdash.utils.google_oauth.requests.post', return_value=make_response(400)):
            assert GoogleOAuth('cid', 'secret', 'cb').exchange_code_for_token('code') is None

    def test_exchange_success(self):
        response = make_response(200, {'access_token': 'at', 'id_token': 'it', 'scope': 'openid'})
        with patch('tagdash.utils.google_oauth.requests.post', return_value=response):
            credentials = GoogleOAuth('cid', 'secret', 'cb').exchange_code_for_token('code')
        assert credentials == ProviderCredentials(token='at', id_token='it', scope='openid')

    def test_user_info_from_verified_id_token(self):
        claims = {'sub': '42', 'email': 'ada@example.com', 'picture': 'p.png'}
        with patch('tagdash.utils.google_oauth.id_token.verify_oauth2_token', return_value=claims):
            info = GoogleOAuth('cid', 'secret', 'cb').get_user_info(ProviderCredentials('at', 'it'))
        assert info == {'id': '42', 'email': 'ada@example.com', 'name': 'ada', 'picture': 'p.png'}

    def test_invalid_id_token(self):
        with patch('tagdash.utils.google_oauth.id_token.verify_oauth2_token', side_effect=ValueError('bad')):
            assert GoogleOAuth('cid', 'secret', 'cb').get_user_info(ProviderCredentials('at', 'it')) is None
