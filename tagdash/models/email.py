from tagdash import db
from tagdash.utils.dates import utcnow


class Email(db.Model):
    """Local record of a Gmail message; only locally-owned state lives here."""

    __tablename__ = 'emails'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    email_id = db.Column(db.String(255), nullable=False)
    thread_id = db.Column(db.String(255))
    is_starred = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (db.UniqueConstraint('user_id', 'email_id', name='unique_user_email'),)

    def __repr__(self):
        return f'<Email {self.email_id}>'


class EmailTag(db.Model):
    __tablename__ = 'email_tags'

    email_id = db.Column(db.String(255), primary_key=True)
    tag_id = db.Column(db.Integer, db.ForeignKey('tags.id'), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), primary_key=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    tagged_at = db.Column(db.DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f'<EmailTag {self.email_id}:{self.tag_id}>'


class RemovedEmailTagLog(db.Model):
    """Append-only record of tag detachments, read by the activity feed."""

    __tablename__ = 'removed_email_tags_log'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    email_id = db.Column(db.String(255), nullable=False)
    # No foreign key: log rows outlive the tag they mention.
    tag_id = db.Column(db.Integer, nullable=False)
    removed_at = db.Column(db.DateTime, default=utcnow, index=True)


class CalendarEventTag(db.Model):
    __tablename__ = 'calendar_event_tags'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    event_id = db.Column(db.String(255), nullable=False, index=True)
    tag_id = db.Column(db.Integer, db.ForeignKey('tags.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (db.UniqueConstraint('event_id', 'tag_id', 'user_id', name='unique_event_tag'),)
