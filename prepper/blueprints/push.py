from flask import g, jsonify, abort

from ..blueprints import main_bp
from ..models import db, PushSubscription
from ..push import is_configured, public_key
from ..notifications import send_test
from .auth import login_required, json_body


@main_bp.route('/api/push/vapid-public-key', methods=['GET'])
def api_vapid_public_key():
    if not public_key():
        abort(503, description='Push notifications are not configured')
    return jsonify({"publicKey": public_key()})


@main_bp.route('/api/push/subscribe', methods=['POST'])
@login_required
def api_subscribe():
    data = json_body()
    endpoint = data.get('endpoint')
    keys = data.get('keys') if isinstance(data.get('keys'), dict) else {}
    if not isinstance(endpoint, str) or not endpoint or not keys.get('p256dh') or not keys.get('auth'):
        abort(400, description='Invalid subscription')

    # The endpoint identifies the browser; re-subscribing moves it to the caller
    sub = PushSubscription.query.filter_by(endpoint=endpoint).first()
    if sub is None:
        sub = PushSubscription(endpoint=endpoint)
        db.session.add(sub)
    sub.user_id = g.user.id
    sub.p256dh = keys['p256dh']
    sub.auth = keys['auth']
    db.session.commit()
    return jsonify({"ok": True, "id": sub.id})


@main_bp.route('/api/push/subscribe', methods=['DELETE'])
@login_required
def api_unsubscribe():
    endpoint = json_body().get('endpoint')
    if not endpoint:
        abort(400, description='Endpoint is required')
    PushSubscription.query.filter_by(endpoint=endpoint, user_id=g.user.id).delete()
    db.session.commit()
    return jsonify({"ok": True})


@main_bp.route('/api/push/test', methods=['POST'])
@login_required
def api_push_test():
    if not is_configured():
        abort(503, description='Push notifications are not configured')
    if not g.user.push_subscriptions:
        abort(400, description='No push subscriptions found. Please enable notifications first.')
    result = send_test(g.user)
    return jsonify({"ok": True, **result})
