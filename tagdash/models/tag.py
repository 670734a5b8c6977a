from tagdash import db
from tagdash.utils.dates import utcnow

TAG_TYPES = ('pin', 'priority')
MAX_TAGS_PER_TYPE = 12
DEFAULT_TAG_COLOR = 'gray'

DEFAULT_TAGS = {
    'pin': [
        ('Events', 'blue'),
        ('Hotels', 'green'),
        ('Tickets', 'purple'),
    ],
    'priority': [
        ('Urgent', 'red'),
        ('Important', 'orange'),
        ('Waitlist', 'yellow'),
    ],
}


class Tag(db.Model):
    __tablename__ = 'tags'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(80), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    color = db.Column(db.String(32), default=DEFAULT_TAG_COLOR)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Deleting a tag removes every association that points at it.
    email_links = db.relationship('EmailTag', backref='tag', lazy=True, cascade='all, delete-orphan')
    event_links = db.relationship('CalendarEventTag', backref='tag', lazy=True, cascade='all, delete-orphan')
    custom_card_links = db.relationship('CustomCardTag', backref='tag', lazy=True, cascade='all, delete-orphan')
    timeline_card_links = db.relationship('TimelineCardTag', backref='tag', lazy=True, cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Tag {self.type}:{self.name}>'
