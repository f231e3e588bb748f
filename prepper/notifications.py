"""Expiration notifications sent by the scheduled jobs.

Each run re-reads every item expiring within a week and notifies the members
of its stash. Runs are not idempotent unless ``notifications.dedupe_daily``
is enabled, in which case a (user, tag, day) ledger suppresses repeats.
"""
from datetime import datetime
import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from .expiration import days_until, window_end
from .models import db, Item, StashMember, NotificationLog
from .push import send_push, is_configured, build_payload, PushError

logger = logging.getLogger(__name__)

THRESHOLD_DAYS = (7, 3, 1, 0)

MESSAGES = {
    'en': {
        'title': 'Expiration alert',
        'expired_one': '{name} has expired',
        'expired_many': '{count} items have expired',
        'tomorrow_one': '{name} expires tomorrow',
        'tomorrow_many': '{count} items expire tomorrow',
        'soon_one': '{name} expires soon',
        'soon_many': '{count} items expire soon',
        'item_expired': '{name} has expired!',
        'item_tomorrow': '{name} expires tomorrow!',
        'item_days': '{name} expires in {days} days',
        'test_title': 'Test',
        'test_body': 'Notifications are working',
    },
    'da': {
        'title': 'Udløbsadvarsel',
        'expired_one': '{name} er udløbet',
        'expired_many': '{count} varer er udløbet',
        'tomorrow_one': '{name} udløber i morgen',
        'tomorrow_many': '{count} varer udløber i morgen',
        'soon_one': '{name} udløber snart',
        'soon_many': '{count} varer udløber snart',
        'item_expired': '{name} er udløbet!',
        'item_tomorrow': '{name} udløber i morgen!',
        'item_days': '{name} udløber om {days} dage',
        'test_title': 'Test',
        'test_body': 'Notifikationer virker',
    },
}

# bucket -> (tag, url, requireInteraction)
BUCKETS = [
    ('expired', 'expired-items', '/inventory?expiration=expired', True),
    ('tomorrow', 'expiring-tomorrow', '/inventory?expiration=soon', True),
    ('soon', 'expiring-soon', '/inventory?expiration=soon', False),
]


def _texts(user) -> dict:
    return MESSAGES.get(getattr(user, 'language', None) or 'en', MESSAGES['en'])


def _dedupe_enabled() -> bool:
    return bool((current_app.config['PREPPER_CONFIG'].get('notifications') or {}).get('dedupe_daily'))


def _already_sent(user_id, tag, day) -> bool:
    return NotificationLog.query.filter_by(user_id=user_id, tag=tag, sent_on=day).first() is not None


def _record_sent(user_id, tag, day):
    try:
        with db.session.begin_nested():
            db.session.add(NotificationLog(user_id=user_id, tag=tag, sent_on=day))
    except IntegrityError:
        logger.info("Notification %s for user %s already recorded for %s", tag, user_id, day)


def bucket_name(days: int) -> str | None:
    if days <= 0:
        return 'expired'
    if days == 1:
        return 'tomorrow'
    if days <= 7:
        return 'soon'
    return None


def aggregate_messages(buckets: dict, texts: dict) -> list:
    messages = []
    for bucket, tag, url, sticky in BUCKETS:
        names = buckets.get(bucket) or []
        if not names:
            continue
        if len(names) == 1:
            body = texts[f'{bucket}_one'].format(name=names[0])
        else:
            body = texts[f'{bucket}_many'].format(count=len(names))
        messages.append(build_payload(texts['title'], body, url=url, tag=tag, require_interaction=sticky))
    return messages


class Delivery:
    """Counts deliveries for one run and prunes subscriptions that are gone."""

    def __init__(self):
        self.sent = 0
        self.removed = 0
        self._gone = set()

    def deliver(self, subscriptions, payload) -> int:
        delivered = 0
        for sub in subscriptions:
            if sub.id in self._gone:
                continue
            try:
                ok = send_push(sub, payload)
            except PushError as e:
                logger.error("Error sending notification: %s", e)
                continue
            if ok:
                delivered += 1
            else:
                self._gone.add(sub.id)
                db.session.delete(sub)
                self.removed += 1
        self.sent += delivered
        return delivered


def _expiring_items(now):
    return (
        Item.query
        .filter(Item.expiration_date.isnot(None), Item.expiration_date <= window_end(now))
        .order_by(Item.expiration_date.asc(), Item.id.asc())
        .all()
    )


def check_expiring(now: datetime | None = None) -> dict:
    """One aggregated message per bucket per member, sent to all their devices."""
    now = now or datetime.utcnow()
    items = _expiring_items(now)
    summary = {'itemsChecked': len(items), 'notificationsSent': 0, 'subscriptionsRemoved': 0}
    if not is_configured():
        logger.error("VAPID keys not configured; skipping %d expiring items", len(items))
        return summary

    per_user = {}
    for item in items:
        bucket = bucket_name(days_until(item.expiration_date, now))
        if bucket is None:
            continue
        for member in item.stash.members:
            entry = per_user.setdefault(member.user_id, {'user': member.user, 'expired': [], 'tomorrow': [], 'soon': []})
            entry[bucket].append(item.name)

    dedupe = _dedupe_enabled()
    today = now.date()
    delivery = Delivery()
    for user_id, entry in per_user.items():
        user = entry['user']
        subscriptions = list(user.push_subscriptions)
        if not subscriptions:
            continue
        for payload in aggregate_messages(entry, _texts(user)):
            if dedupe and _already_sent(user_id, payload['tag'], today):
                continue
            if delivery.deliver(subscriptions, payload) and dedupe:
                _record_sent(user_id, payload['tag'], today)
    db.session.commit()

    summary['notificationsSent'] = delivery.sent
    summary['subscriptionsRemoved'] = delivery.removed
    logger.info("Checked %d items, sent %d notifications", len(items), delivery.sent)
    return summary


def check_thresholds(now: datetime | None = None) -> dict:
    """Per-item messages on the days listed in THRESHOLD_DAYS only."""
    now = now or datetime.utcnow()
    items = _expiring_items(now)
    summary = {'itemsChecked': len(items), 'notificationsSent': 0, 'subscriptionsRemoved': 0}
    if not is_configured():
        logger.error("VAPID keys not configured; skipping %d expiring items", len(items))
        return summary

    dedupe = _dedupe_enabled()
    today = now.date()
    delivery = Delivery()
    for item in items:
        days = days_until(item.expiration_date, now)
        if days not in THRESHOLD_DAYS:
            continue
        tag = f'expiring-{item.id}-{days}'
        for member in item.stash.members:
            user = member.user
            if dedupe and _already_sent(user.id, tag, today):
                continue
            texts = _texts(user)
            if days <= 0:
                body = texts['item_expired'].format(name=item.name)
            elif days == 1:
                body = texts['item_tomorrow'].format(name=item.name)
            else:
                body = texts['item_days'].format(name=item.name, days=days)
            payload = build_payload(texts['title'], body, url='/expiring', tag=tag, require_interaction=days <= 1)
            if delivery.deliver(list(user.push_subscriptions), payload) and dedupe:
                _record_sent(user.id, tag, today)
    db.session.commit()

    summary['notificationsSent'] = delivery.sent
    summary['subscriptionsRemoved'] = delivery.removed
    return summary


def send_test(user, now: datetime | None = None) -> dict:
    """Send the caller a summary of their own expiring items, or a plain test message."""
    now = now or datetime.utcnow()
    subscriptions = list(user.push_subscriptions)
    stash_ids = db.select(StashMember.stash_id).where(StashMember.user_id == user.id)
    items = (
        Item.query
        .filter(Item.stash_id.in_(stash_ids), Item.expiration_date.isnot(None), Item.expiration_date <= window_end(now))
        .order_by(Item.expiration_date.asc())
        .all()
    )
    texts = _texts(user)
    expired = [i.name for i in items if days_until(i.expiration_date, now) <= 0]
    soon = [i.name for i in items if 0 < days_until(i.expiration_date, now) <= 7]
    if expired:
        body = texts['expired_one'].format(name=expired[0]) if len(expired) == 1 else texts['expired_many'].format(count=len(expired))
        payload = build_payload(texts['title'], body, url='/inventory?expiration=expired', tag='test-notification')
    elif soon:
        body = texts['soon_one'].format(name=soon[0]) if len(soon) == 1 else texts['soon_many'].format(count=len(soon))
        payload = build_payload(texts['title'], body, url='/inventory?expiration=soon', tag='test-notification')
    else:
        payload = build_payload(texts['test_title'], texts['test_body'], url='/', tag='test-notification')

    delivery = Delivery()
    delivery.deliver(subscriptions, payload)
    db.session.commit()
    return {'sent': delivery.sent, 'total': len(subscriptions)}
