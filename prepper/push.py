"""Web push delivery with VAPID credentials."""
import json
import logging

from flask import current_app
from pywebpush import webpush, WebPushException

logger = logging.getLogger(__name__)

# Push services answer 404/410 once a subscription has been revoked
GONE_STATUSES = {404, 410}


class PushError(Exception):
    pass


def _push_config() -> dict:
    return current_app.config['PREPPER_CONFIG'].get('push') or {}


def is_configured() -> bool:
    cfg = _push_config()
    return bool(cfg.get('vapid_public_key') and cfg.get('vapid_private_key'))


def public_key():
    return _push_config().get('vapid_public_key')


def build_payload(title, body, url='/', tag='default', require_interaction=False, actions=None) -> dict:
    payload = {
        'title': title,
        'body': body,
        'url': url,
        'tag': tag,
        'requireInteraction': require_interaction,
    }
    if actions:
        payload['actions'] = actions
    return payload


def send_push(subscription, payload: dict) -> bool:
    """Deliver payload to one subscription.

    Returns False when the push service reports the subscription as gone,
    True on success. Any other failure raises PushError.
    """
    cfg = _push_config()
    if not is_configured():
        raise PushError('VAPID keys not configured')
    try:
        webpush(
            subscription_info={
                'endpoint': subscription.endpoint,
                'keys': {'p256dh': subscription.p256dh, 'auth': subscription.auth},
            },
            data=json.dumps(payload),
            vapid_private_key=cfg['vapid_private_key'],
            vapid_claims={'sub': cfg.get('contact') or 'mailto:admin@localhost'},
        )
    except WebPushException as e:
        status = getattr(e.response, 'status_code', None)
        if status in GONE_STATUSES:
            logger.info("Subscription %s is gone (HTTP %s)", subscription.id, status)
            return False
        raise PushError(f"Push to subscription {subscription.id} failed: {e}") from e
    return True
