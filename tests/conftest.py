"""
Pytest fixtures for Tagdash tests
"""
from unittest.mock import MagicMock

import pytest

from tagdash import create_app, db
from tagdash.models import User
from tagdash.models.user import CALENDAR_SCOPE, GMAIL_SCOPE
from tagdash.services.email_list import EmailListController, EmailListState
from tagdash.services.readers import EmailReader
from tagdash.services.tag_filter import TagFilter
from tagdash.services.tag_store import TagStore
from tests.fakes import FakeCalendar, FakeGmail, make_message


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret-key',
        'LOG_DIR': str(tmp_path / 'logs'),
        'GMAIL_DETAIL_WORKERS': 2,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def user(app):
    user = User(
        username='ada',
        email='ada@example.com',
        google_id='google-ada',
        google_access_token='provider-token',
        granted_scopes=f'{GMAIL_SCOPE} {CALENDAR_SCOPE}',
        is_google_connected=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def other_user(app):
    user = User(username='bob', email='bob@example.com', google_id='google-bob')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def store(user):
    return TagStore(user.id)


@pytest.fixture
def pin(store):
    return store.create_tag('Travel', 'pin', 'blue')


@pytest.fixture
def priority(store):
    return store.create_tag('Urgent', 'priority', 'red')


@pytest.fixture
def gmail():
    return FakeGmail([
        make_message('m1', subject='Flight confirmation', labels=('INBOX', 'UNREAD', 'IMPORTANT')),
        make_message('m2', subject='Hotel booking', labels=('INBOX',)),
        make_message('m3', subject='Concert tickets', labels=('INBOX', 'IMPORTANT')),
        make_message('m4', subject='Weekly newsletter', labels=('INBOX', 'UNREAD')),
        make_message('m5', subject='Flight change', labels=('INBOX',)),
    ])


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def list_state(user):
    return EmailListState(user_id=user.id)


@pytest.fixture
def controller(list_state, gmail, store):
    return EmailListController(list_state, EmailReader(gmail, store, page_size=2), TagFilter(store))


@pytest.fixture
def client(app, user):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True
    return client


@pytest.fixture
def anonymous_client(app):
    return app.test_client()


@pytest.fixture
def mock_session():
    """A requests.Session double; set ``.request.return_value`` or ``.side_effect``."""
    session = MagicMock()
    session.headers = {}
    return session
