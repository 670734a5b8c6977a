from flask import Blueprint, request, jsonify, redirect, url_for, session, current_app, abort
from flask_login import login_user, logout_user, login_required, current_user
from tagdash import db, login_manager
from tagdash.errors import ValidationError
from tagdash.models import User, TAG_TYPES
from tagdash.services.activity import ActivityAggregator
from tagdash.services.cards import UNCHANGED, CustomCardService, TimelineCardService
from tagdash.services.email_list import EmailListController, ViewParams
from tagdash.services.mutations import StarToggle, TagToggle
from tagdash.services.readers import CalendarReader, CustomCardReader, EmailReader, ProjectCardReader
from tagdash.services.tag_filter import FilterMode, TagFilter, filter_items, parse_tag_ids
from tagdash.services.tag_store import TagStore
from tagdash.services.view_sessions import current_list_state
from tagdash.session_state import SessionState
from tagdash.utils.calendar_client import CalendarClient
from tagdash.utils.dates import parse_rfc3339
from tagdash.utils.gmail_client import GmailClient, decode_body, find_best_body_part, get_header, parse_sender
from tagdash.utils.google_oauth import GoogleOAuth
import logging

logger = logging.getLogger(__name__)

# Create blueprints
main_bp = Blueprint('main', __name__)
auth_bp = Blueprint('auth', __name__, url_prefix='/auth')
email_bp = Blueprint('email', __name__, url_prefix='/email')
tag_bp = Blueprint('tag', __name__, url_prefix='/tag')
calendar_bp = Blueprint('calendar', __name__, url_prefix='/calendar')
card_bp = Blueprint('card', __name__, url_prefix='/card')
activity_bp = Blueprint('activity', __name__, url_prefix='/activity')


# Login manager
@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


def _json_body():
    return request.get_json(silent=True) or {}


def _store():
    return TagStore(current_user.id)


def _session_state():
    return SessionState.current()


def _gmail():
    token = _session_state().require_provider_token()
    return GmailClient(token, max_workers=current_app.config['GMAIL_DETAIL_WORKERS'])


def _calendar():
    return CalendarClient(_session_state().require_provider_token())


def _tag_filter(store):
    return TagFilter(store, server_aggregate=current_app.config['TAG_FILTER_SERVER_AGGREGATE'])


def _email_reader(store):
    return EmailReader(
        _gmail(),
        store,
        page_size=current_app.config['EMAIL_PAGE_SIZE'],
        search_max_results=current_app.config['SEARCH_MAX_RESULTS'],
    )


def _list_controller():
    store = _store()
    return EmailListController(current_list_state(current_user.id), _email_reader(store), _tag_filter(store))


def _time_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    value = parse_rfc3339(raw)
    if value is None:
        raise ValidationError(f'Invalid {name}', field=name)
    return value


def _tag_ids_from(data, key='tag_ids'):
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple, str)):
        raise ValidationError(f'{key} must be a list', field=key)
    return parse_tag_ids(raw)


# Main Routes
@main_bp.route('/')
def index():
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))
    return redirect(url_for('auth.login'))


@main_bp.route('/dashboard')
@login_required
def dashboard():
    store = _store()
    return jsonify({
        'success': True,
        'session': _session_state().to_dict(),
        'pins': [tag.to_dict() for tag in store.list_tags('pin')],
        'priorities': [tag.to_dict() for tag in store.list_tags('priority')],
    })


@main_bp.route('/dashboard/filter')
@login_required
def dashboard_filter():
    """Emails, calendar events and projects matching the selected tags."""
    store = _store()
    selected = parse_tag_ids(request.args.get('tags'))
    mode = FilterMode.parse(request.args.get('mode'))
    result = _tag_filter(store).filter_dashboard(
        selected,
        mode,
        email_reader=_email_reader(store),
        calendar_reader=CalendarReader(_calendar(), store),
        project_reader=ProjectCardReader(store),
    )
    payload = result.to_dict()
    payload.update({'success': True, 'tags': selected, 'mode': mode.value})
    return jsonify(payload)


@main_bp.route('/dashboard/tagged-today')
@login_required
def tagged_today():
    store = _store()
    items = _email_reader(store).read_fresh(store.email_ids_tagged_today())
    items.sort(key=lambda item: item.date, reverse=True)
    return jsonify({'success': True, 'emails': [item.to_dict() for item in items]})


# Auth Routes
@auth_bp.route('/login')
def login():
    return jsonify({
        'success': True,
        'authenticated': current_user.is_authenticated,
        'login_url': url_for('auth.google_login'),
    })


@auth_bp.route('/google')
def google_login():
    """Redirect to Google OAuth login"""
    google_oauth = GoogleOAuth.from_config(current_app.config)
    if not google_oauth.is_configured:
        return jsonify({
            'success': False,
            'message': 'Google OAuth is not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET in your .env file.',
        }), 400
    authorization_url, state = google_oauth.get_authorization_url()
    session['oauth_state'] = state
    return redirect(authorization_url)


@auth_bp.route('/google/callback')
def google_callback():
    """Handle Google OAuth callback"""
    state = request.args.get('state')
    if not state or state != session.pop('oauth_state', None):
        logger.warning("OAuth callback state mismatch")
        return redirect(url_for('auth.login'))

    code = request.args.get('code')
    if not code:
        logger.warning("OAuth callback without authorization code (error=%s)", request.args.get('error'))
        return redirect(url_for('auth.login'))

    google_oauth = GoogleOAuth.from_config(current_app.config)
    credentials = google_oauth.exchange_code_for_token(code)
    if not credentials or not credentials.token:
        return redirect(url_for('auth.login'))

    user_info = google_oauth.get_user_info(credentials)
    if not user_info or not user_info.get('email'):
        return redirect(url_for('auth.login'))

    # Find or create user
    user = User.query.filter_by(google_id=user_info['id']).first()
    if not user:
        user = User.query.filter_by(email=user_info['email']).first()
        if user:
            user.google_id = user_info['id']
        else:
            logger.info("Creating user for %s", user_info['email'])
            user = User(
                username=user_info['email'].split('@')[0],
                email=user_info['email'],
                google_id=user_info['id']
            )
            db.session.add(user)

    user.google_access_token = credentials.token
    user.granted_scopes = credentials.scope or ' '.join(google_oauth.scopes)
    user.is_google_connected = True
    db.session.commit()

    seeded = TagStore(user.id).seed_default_tags()
    if seeded:
        logger.info("Seeded %s default tags for user %s", seeded, user.id)

    login_user(user)
    return redirect(url_for('main.dashboard'))


@auth_bp.route('/logout')
@login_required
def logout():
    logout_user()
    session.pop('view_session_id', None)
    return redirect(url_for('auth.login'))


# Email Routes
def _list_response(result):
    payload = {'success': True, 'committed': result.committed}
    payload.update(result.snapshot)
    return jsonify(payload)


@email_bp.route('/')
@login_required
def list_emails():
    """Load the email list for the view described by the query string."""
    controller = _list_controller()
    return _list_response(controller.load(ViewParams.from_args(request.args)))


@email_bp.route('/next', methods=['POST'])
@login_required
def next_page():
    return _list_response(_list_controller().next_page())


@email_bp.route('/prev', methods=['POST'])
@login_required
def prev_page():
    return _list_response(_list_controller().prev_page())


@email_bp.route('/refresh', methods=['POST'])
@login_required
def refresh_emails():
    return _list_response(_list_controller().refresh())


@email_bp.route('/select', methods=['POST'])
@login_required
def select_emails():
    data = _json_body()
    action = data.get('action', 'select')
    ids = [str(i) for i in data.get('ids') or []]
    state = current_list_state(current_user.id)
    controller = EmailListController(state, None, None)
    if action == 'select':
        selection = controller.select(ids)
    elif action == 'deselect':
        selection = controller.deselect(ids)
    elif action == 'all':
        selection = controller.select_all()
    elif action == 'clear':
        selection = controller.clear_selection()
    else:
        raise ValidationError('Unknown selection action', field='action')
    return jsonify({'success': True, 'selection': selection})


@email_bp.route('/<email_id>/star', methods=['POST'])
@login_required
def toggle_star(email_id):
    data = _json_body()
    starred = data.get('starred')
    if starred is not None and not isinstance(starred, bool):
        raise ValidationError('starred must be true or false', field='starred')
    command = StarToggle(
        current_list_state(current_user.id),
        email_id,
        _gmail(),
        _store(),
        starred=starred,
        thread_id=data.get('thread_id'),
    )
    command.run()
    return jsonify({'success': True, 'email_id': email_id, 'starred': command.after})


@email_bp.route('/<email_id>/tag/<int:tag_id>', methods=['POST'])
@login_required
def toggle_email_tag(email_id, tag_id):
    store = _store()
    command = TagToggle(
        current_list_state(current_user.id),
        email_id,
        tag_id,
        store,
        thread_id=_json_body().get('thread_id'),
    )
    command.run()
    if command.item is not None:
        tags = command.item.tags
    else:
        record = store.fetch_email_data([email_id]).get(email_id)
        tags = record.tags if record else []
    return jsonify({
        'success': True,
        'email_id': email_id,
        'added': command.added,
        'tags': [tag.to_dict() for tag in tags],
    })


@email_bp.route('/selection/tag/<int:tag_id>', methods=['POST'])
@login_required
def tag_selection(tag_id):
    """Attach a tag to every selected email that doesn't carry it yet."""
    state = current_list_state(current_user.id)
    store = _store()
    with state.lock:
        selected = list(state.selection)
    tagged = []
    for email_id in selected:
        command = TagToggle(state, email_id, tag_id, store, tagged=True)
        command.run()
        if command.added:
            tagged.append(email_id)
    return jsonify({'success': True, 'tagged': tagged})


def _message_payload(message):
    headers = (message.get('payload') or {}).get('headers') or []
    sender, address = parse_sender(get_header(headers, 'From'))
    mime_type, data = find_best_body_part(message.get('payload'))
    return {
        'id': message.get('id'),
        'thread_id': message.get('threadId'),
        'subject': get_header(headers, 'Subject') or '(No Subject)',
        'sender': sender,
        'sender_address': address,
        'to': get_header(headers, 'To'),
        'date': get_header(headers, 'Date'),
        'internal_date': message.get('internalDate'),
        'snippet': message.get('snippet') or '',
        'label_ids': message.get('labelIds') or [],
        'body': decode_body(data),
        'body_type': mime_type or 'text/plain',
    }


@email_bp.route('/thread/<thread_id>')
@login_required
def view_thread(thread_id):
    """Messages of a thread oldest first; unread ones are marked read."""
    gmail = _gmail()
    thread = gmail.get_thread(thread_id)
    state = current_list_state(current_user.id)
    for message in thread['messages']:
        if 'UNREAD' in (message.get('labelIds') or []):
            gmail.mark_read(message['id'])
            message['labelIds'] = [label for label in message['labelIds'] if label != 'UNREAD']
            with state.lock:
                cached = state.cache.get(message['id'])
                if cached is not None:
                    cached.read = True
    return jsonify({
        'success': True,
        'thread_id': thread_id,
        'messages': [_message_payload(message) for message in thread['messages']],
    })


@email_bp.route('/thread/<thread_id>/reply', methods=['POST'])
@login_required
def reply_to_thread(thread_id):
    data = _json_body()
    body = (data.get('body') or '').strip()
    if not body:
        raise ValidationError('Reply body is required', field='body')
    gmail = _gmail()
    messages = gmail.get_thread(thread_id)['messages']
    if not messages:
        abort(404)
    sent = gmail.send_reply(thread_id, body, messages[-1])
    return jsonify({'success': True, 'message_id': sent.get('id'), 'thread_id': sent.get('threadId', thread_id)})


@email_bp.route('/send', methods=['POST'])
@login_required
def send_email():
    data = _json_body()
    sent = _gmail().send_message(data.get('to'), data.get('subject'), data.get('body'))
    return jsonify({'success': True, 'message_id': sent.get('id'), 'thread_id': sent.get('threadId')})


# Tag Routes
@tag_bp.route('/all')
@login_required
def get_tags():
    """Get all tags for current user"""
    tag_type = request.args.get('type')
    if tag_type and tag_type not in TAG_TYPES:
        raise ValidationError('Unknown tag type', field='type')
    tags = _store().list_tags(tag_type)
    return jsonify({'success': True, 'tags': [tag.to_dict() for tag in tags]})


@tag_bp.route('/create', methods=['POST'])
@login_required
def create_tag():
    data = _json_body()
    tag = _store().create_tag(data.get('name'), data.get('type'), data.get('color'))
    return jsonify({'success': True, 'tag': tag.to_dict()}), 201


@tag_bp.route('/<int:tag_id>', methods=['DELETE'])
@login_required
def delete_tag(tag_id):
    if not _store().delete_tag(tag_id):
        return jsonify({'success': False, 'message': 'Tag not found'}), 404
    state = current_list_state(current_user.id)
    with state.lock:
        for item in state.cache.values():
            if tag_id in item.tag_ids:
                item.tags = [tag for tag in item.tags if tag.id != tag_id]
    return jsonify({'success': True})


# Calendar Routes
@calendar_bp.route('/events')
@login_required
def list_events():
    store = _store()
    events = CalendarReader(_calendar(), store).read_window(_time_arg('time_min'), _time_arg('time_max'))
    events = filter_items(events, parse_tag_ids(request.args.get('tags')), FilterMode.parse(request.args.get('mode')))
    return jsonify({'success': True, 'events': [event.to_dict() for event in events]})


@calendar_bp.route('/today')
@login_required
def todays_events():
    events = CalendarReader(_calendar(), _store()).read_today()
    return jsonify({'success': True, 'events': [event.to_dict() for event in events]})


@calendar_bp.route('/events', methods=['POST'])
@login_required
def create_event():
    data = _json_body()
    tag_ids = _tag_ids_from(data)
    event = _calendar().create_event(data.get('event') or {})
    tags = []
    if tag_ids:
        tags = _store().set_tags_for_event(event['id'], tag_ids)
    return jsonify({'success': True, 'event': event, 'tags': [tag.to_dict() for tag in tags]}), 201


@calendar_bp.route('/events/<event_id>', methods=['PUT'])
@login_required
def update_event(event_id):
    data = _json_body()
    tag_ids = _tag_ids_from(data)
    event = _calendar().update_event(event_id, data.get('event') or {})
    store = _store()
    if tag_ids is not None:
        tags = store.set_tags_for_event(event_id, tag_ids)
    else:
        tags = store.tags_for_events([event_id]).get(event_id, [])
    return jsonify({'success': True, 'event': event, 'tags': [tag.to_dict() for tag in tags]})


@calendar_bp.route('/events/<event_id>', methods=['DELETE'])
@login_required
def delete_event(event_id):
    _calendar().delete_event(event_id)
    _store().delete_event_tags(event_id)
    return jsonify({'success': True})


@calendar_bp.route('/events/<event_id>/tags', methods=['PUT'])
@login_required
def set_event_tags(event_id):
    tag_ids = _tag_ids_from(_json_body()) or []
    tags = _store().set_tags_for_event(event_id, tag_ids)
    return jsonify({'success': True, 'tags': [tag.to_dict() for tag in tags]})


# Card Routes
@card_bp.route('/custom')
@login_required
def list_custom_cards():
    cards = CustomCardReader(_store()).read_all()
    return jsonify({'success': True, 'cards': [card.to_dict() for card in cards]})


@card_bp.route('/custom', methods=['POST'])
@login_required
def create_custom_card():
    data = _json_body()
    card = CustomCardService(_store()).create(data.get('title'), data.get('content'), _tag_ids_from(data))
    return jsonify({'success': True, 'card': card.to_dict()}), 201


@card_bp.route('/custom/<int:card_id>', methods=['PUT'])
@login_required
def update_custom_card(card_id):
    data = _json_body()
    card = CustomCardService(_store()).update(
        card_id,
        title=data.get('title'),
        content=data.get('content'),
        tag_ids=_tag_ids_from(data),
    )
    if card is None:
        return jsonify({'success': False, 'message': 'Card not found'}), 404
    return jsonify({'success': True, 'card': card.to_dict()})


@card_bp.route('/custom/<int:card_id>', methods=['DELETE'])
@login_required
def delete_custom_card(card_id):
    if not CustomCardService(_store()).delete(card_id):
        return jsonify({'success': False, 'message': 'Card not found'}), 404
    return jsonify({'success': True})


@card_bp.route('/timeline')
@login_required
def list_timeline_cards():
    store = _store()
    projects = _tag_filter(store).filter_project_cards(
        ProjectCardReader(store),
        parse_tag_ids(request.args.get('tags')),
        FilterMode.parse(request.args.get('mode')),
        query=request.args.get('q'),
    )
    return jsonify({'success': True, 'projects': [project.to_dict() for project in projects]})


@card_bp.route('/timeline', methods=['POST'])
@login_required
def create_timeline_card():
    data = _json_body()
    project = TimelineCardService(_store()).create(
        data.get('title'),
        data.get('start_date'),
        data.get('end_date'),
        description=data.get('description'),
        tag_ids=_tag_ids_from(data),
    )
    return jsonify({'success': True, 'project': project.to_dict()}), 201


@card_bp.route('/timeline/<int:card_id>', methods=['PUT'])
@login_required
def update_timeline_card(card_id):
    data = _json_body()
    project = TimelineCardService(_store()).update(
        card_id,
        title=data.get('title'),
        start_date=data.get('start_date'),
        end_date=data.get('end_date', UNCHANGED),
        description=data.get('description'),
        tag_ids=_tag_ids_from(data),
    )
    if project is None:
        return jsonify({'success': False, 'message': 'Project not found'}), 404
    return jsonify({'success': True, 'project': project.to_dict()})


@card_bp.route('/timeline/<int:card_id>/tags', methods=['PUT'])
@login_required
def set_timeline_card_tags(card_id):
    project = TimelineCardService(_store()).set_tags(card_id, _tag_ids_from(_json_body()) or [])
    if project is None:
        return jsonify({'success': False, 'message': 'Project not found'}), 404
    return jsonify({'success': True, 'project': project.to_dict()})


@card_bp.route('/timeline/<int:card_id>', methods=['DELETE'])
@login_required
def delete_timeline_card(card_id):
    if not TimelineCardService(_store()).delete(card_id):
        return jsonify({'success': False, 'message': 'Project not found'}), 404
    return jsonify({'success': True})


# Activity Routes
@activity_bp.route('/')
@login_required
def activity_feed():
    state = _session_state()
    calendar = CalendarClient(state.provider_token) if state.calendar_connected else None
    aggregator = ActivityAggregator(
        _store(),
        calendar=calendar,
        limit=current_app.config['ACTIVITY_LIMIT'],
        calendar_limit=current_app.config['CALENDAR_ACTIVITY_LIMIT'],
    )
    display_limit = request.args.get('limit', type=int)
    events = aggregator.feed(display_limit=display_limit if display_limit and display_limit > 0 else None)
    return jsonify({'success': True, 'events': [event.to_dict() for event in events]})
