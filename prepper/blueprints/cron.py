from flask import current_app, request, jsonify, abort
from functools import wraps

from ..blueprints import main_bp
from ..security import secret_matches, bearer_token
from ..notifications import check_expiring, check_thresholds


def cron_secret_required(fn):
    """Accept `Authorization: Bearer <secret>` or `X-API-Key: <secret>`."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = (current_app.config['PREPPER_CONFIG'].get('cron') or {}).get('secret')
        supplied = bearer_token(request.headers.get('Authorization')) or request.headers.get('X-API-Key')
        if not secret_matches(supplied, expected):
            abort(401, description='Unauthorized')
        return fn(*args, **kwargs)
    return wrapper


@main_bp.route('/api/cron/check-expiring', methods=['GET', 'POST'])
@cron_secret_required
def api_cron_check_expiring():
    summary = check_expiring()
    return jsonify({"ok": True, "success": True, **summary})


@main_bp.route('/api/push/check-expiring', methods=['POST'])
@cron_secret_required
def api_push_check_expiring():
    summary = check_thresholds()
    return jsonify({"ok": True, "success": True, **summary})
