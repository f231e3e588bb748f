from . import db
from datetime import datetime, timedelta
import secrets

ROLES = ('OWNER', 'ADMIN', 'MEMBER')
INVITATION_STATUSES = ('PENDING', 'ACCEPTED', 'DECLINED', 'EXPIRED')
CATEGORIES = (
    'WATER',
    'CANNED_FOOD',
    'DRY_GOODS',
    'FIRST_AID',
    'TOOLS',
    'HYGIENE',
    'DOCUMENTS',
    'OTHER',
)

INVITATION_TTL = timedelta(days=7)
RESET_TOKEN_TTL = timedelta(hours=1)


def _invitation_id():
    # Invitation ids end up in emailed links and in the unauthenticated preview
    return secrets.token_hex(16)


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(256), unique=True, index=True)
    password_hash = db.Column(db.String(256))
    external_id = db.Column(db.String(128), unique=True)  # set for accounts from an identity provider
    name = db.Column(db.String(128))
    language = db.Column(db.String(2), default='en')  # en|da
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    memberships = db.relationship('StashMember', back_populates='user', cascade='all, delete-orphan')
    push_subscriptions = db.relationship('PushSubscription', back_populates='user', cascade='all, delete-orphan')


class Stash(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    members = db.relationship('StashMember', back_populates='stash', cascade='all, delete-orphan')
    items = db.relationship('Item', back_populates='stash', cascade='all, delete-orphan')
    checklist_items = db.relationship('ChecklistItem', back_populates='stash', cascade='all, delete-orphan')
    invitations = db.relationship('StashInvitation', back_populates='stash', cascade='all, delete-orphan')


class StashMember(db.Model):
    __table_args__ = (db.UniqueConstraint('stash_id', 'user_id', name='uq_stash_member'),)

    id = db.Column(db.Integer, primary_key=True)
    stash_id = db.Column(db.Integer, db.ForeignKey('stash.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    role = db.Column(db.String(8), nullable=False, default='MEMBER')  # OWNER|ADMIN|MEMBER
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    stash = db.relationship('Stash', back_populates='members')
    user = db.relationship('User', back_populates='memberships')


class StashInvitation(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=_invitation_id)
    stash_id = db.Column(db.Integer, db.ForeignKey('stash.id'), nullable=False, index=True)
    email = db.Column(db.String(256))  # lower-cased
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    invited_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    status = db.Column(db.String(8), nullable=False, default='PENDING')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, default=lambda: datetime.utcnow() + INVITATION_TTL)

    stash = db.relationship('Stash', back_populates='invitations')


class Item(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    stash_id = db.Column(db.Integer, db.ForeignKey('stash.id'), nullable=False, index=True)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(16), nullable=False, default='OTHER')
    quantity = db.Column(db.Integer, nullable=False, default=1)
    expiration_date = db.Column(db.Date, index=True)
    ai_extracted = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    stash = db.relationship('Stash', back_populates='items')
    photos = db.relationship('Photo', back_populates='item', cascade='all, delete-orphan', order_by='Photo.id')


class Photo(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey('item.id'), nullable=False, index=True)
    storage_key = db.Column(db.String(512), nullable=False)
    original_name = db.Column(db.String(256))
    mime_type = db.Column(db.String(64), nullable=False)
    size = db.Column(db.Integer, default=0)
    ai_analysis = db.Column(db.Text)  # JSON-encoded analysis result
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    item = db.relationship('Item', back_populates='photos')


class ChecklistItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    stash_id = db.Column(db.Integer, db.ForeignKey('stash.id'), nullable=False, index=True)
    name = db.Column(db.String(256), nullable=False)
    category = db.Column(db.String(16), nullable=False, default='OTHER')
    is_checked = db.Column(db.Boolean, default=False)
    is_default = db.Column(db.Boolean, default=False)
    linked_item_id = db.Column(db.Integer, db.ForeignKey('item.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    stash = db.relationship('Stash', back_populates='checklist_items')


class PushSubscription(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    endpoint = db.Column(db.String(1024), unique=True, nullable=False)
    p256dh = db.Column(db.String(256), nullable=False)
    auth = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', back_populates='push_subscriptions')


class PasswordResetToken(db.Model):
    token = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class NotificationLog(db.Model):
    # One row per (user, tag, day) when daily de-duplication is enabled
    __table_args__ = (db.UniqueConstraint('user_id', 'tag', 'sent_on', name='uq_notification_day'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    tag = db.Column(db.String(64), nullable=False)
    sent_on = db.Column(db.Date, nullable=False)
