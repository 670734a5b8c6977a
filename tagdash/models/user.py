from flask_login import UserMixin
from tagdash import db

GMAIL_SCOPE = 'https://www.googleapis.com/auth/gmail.modify'
CALENDAR_SCOPE = 'https://www.googleapis.com/auth/calendar'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)

    # Google OAuth fields
    google_id = db.Column(db.String(255), unique=True, nullable=True)
    google_access_token = db.Column(db.Text)
    granted_scopes = db.Column(db.Text, default='')
    is_google_connected = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=db.func.now())

    # Relationships
    tags = db.relationship('Tag', backref='user', lazy=True, cascade='all, delete-orphan')

    @property
    def scope_set(self):
        return frozenset((self.granted_scopes or '').split())

    @property
    def gmail_connected(self):
        return bool(self.is_google_connected and self.google_access_token and GMAIL_SCOPE in self.scope_set)

    @property
    def calendar_connected(self):
        return bool(self.is_google_connected and self.google_access_token and CALENDAR_SCOPE in self.scope_set)

    def __repr__(self):
        return f'<User {self.username}>'
