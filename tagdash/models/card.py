from tagdash import db
from tagdash.utils.dates import utcnow

CARD_ACTIVITY_TYPES = ('CREATED', 'UPDATED', 'DELETED')


class CustomCard(db.Model):
    __tablename__ = 'custom_cards'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, default='')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    tag_links = db.relationship('CustomCardTag', backref='card', lazy=True, cascade='all, delete-orphan')

    def __repr__(self):
        return f'<CustomCard {self.title}>'


class CustomCardTag(db.Model):
    __tablename__ = 'custom_card_tags'

    card_id = db.Column(db.Integer, db.ForeignKey('custom_cards.id'), primary_key=True)
    tag_id = db.Column(db.Integer, db.ForeignKey('tags.id'), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)


class CustomCardLog(db.Model):
    """Append-only audit trail of custom card changes."""

    __tablename__ = 'custom_cards_log'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    # Kept after the card is deleted, so no foreign key.
    card_id = db.Column(db.Integer, nullable=False)
    activity_type = db.Column(db.String(16), nullable=False)
    title = db.Column(db.String(255))
    activity_timestamp = db.Column(db.DateTime, default=utcnow, index=True)


class TimelineCard(db.Model):
    __tablename__ = 'timeline_custom_cards'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    tag_links = db.relationship('TimelineCardTag', backref='card', lazy=True, cascade='all, delete-orphan')

    def __repr__(self):
        return f'<TimelineCard {self.title}>'


class TimelineCardTag(db.Model):
    __tablename__ = 'timeline_card_tags'

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey('timeline_custom_cards.id'), nullable=False, index=True)
    tag_id = db.Column(db.Integer, db.ForeignKey('tags.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (db.UniqueConstraint('card_id', 'tag_id', 'user_id', name='unique_timeline_card_tag'),)
