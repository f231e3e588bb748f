from flask import current_app, request, session, g, jsonify, abort
from functools import wraps
from datetime import datetime
import secrets

from werkzeug.security import generate_password_hash, check_password_hash

from ..blueprints import main_bp
from ..models import db, User, Stash, StashMember, PasswordResetToken, RESET_TOKEN_TTL
from ..security import sanitize_text, normalize_email, MIN_PASSWORD_LENGTH
from ..mailer import send_email, welcome_email, password_reset_email, EmailError

LANGUAGES = ('en', 'da')
DEFAULT_STASH_NAME = {'en': 'My Stash', 'da': 'Mit forråd'}


@main_bp.before_app_request
def load_current_user():
    user_id = session.get('user_id')
    g.user = db.session.get(User, user_id) if user_id else None
    if user_id and g.user is None:
        # Account was deleted under a live session
        session.pop('user_id', None)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if g.get('user') is None:
            abort(401, description='Unauthorized')
        return fn(*args, **kwargs)
    return wrapper


def json_body() -> dict:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='Expected a JSON object')
    return data


def request_language(data: dict, fallback='en') -> str:
    lang = data.get('language')
    return lang if lang in LANGUAGES else fallback


def serialize_user(u: User):
    return {
        'id': u.id,
        'email': u.email,
        'name': u.name,
        'language': u.language or 'en',
        'createdAt': u.created_at.isoformat() if u.created_at else None,
    }


@main_bp.route('/api/auth/register', methods=['POST'])
def register():
    data = json_body()
    email = normalize_email(data.get('email'))
    password = data.get('password')
    if not email or not isinstance(password, str) or not password:
        abort(400, description='Email and password are required')
    if len(password) < MIN_PASSWORD_LENGTH:
        abort(400, description=f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    if User.query.filter_by(email=email).first():
        abort(409, description='User with this email already exists')
    language = request_language(data)
    name = sanitize_text(data.get('name')) or None
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        name=name,
        language=language,
    )
    db.session.add(user)
    # Every account starts with a stash of its own
    stash = Stash(name=DEFAULT_STASH_NAME[language])
    db.session.add(stash)
    db.session.add(StashMember(stash=stash, user=user, role='OWNER'))
    db.session.commit()
    current_app.logger.info('Registered user %s', user.id)

    try:
        subject, html = welcome_email(user.name or user.email, language)
        send_email(user.email, subject, html)
    except EmailError as e:
        current_app.logger.warning('Failed to send welcome email: %s', e)
    return jsonify({"ok": True, "user": serialize_user(user)}), 201


@main_bp.route('/api/auth/login', methods=['POST'])
def login():
    data = json_body()
    email = normalize_email(data.get('email'))
    password = data.get('password') or ''
    user = User.query.filter_by(email=email).first() if email else None
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        abort(401, description='Invalid email or password')
    session.clear()
    session['user_id'] = user.id
    return jsonify({"ok": True, "user": serialize_user(user)})


@main_bp.route('/api/auth/logout', methods=['POST'])
def logout():
    session.pop('user_id', None)
    return jsonify({"ok": True})


@main_bp.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({"ok": True, "user": serialize_user(g.user)})


@main_bp.route('/api/auth/forgot-password', methods=['POST'])
def forgot_password():
    data = json_body()
    if not data.get('email'):
        abort(400, description='Email is required')
    email = normalize_email(data.get('email'))
    user = User.query.filter_by(email=email).first() if email else None
    # Same answer whether or not the account exists
    if not user:
        return jsonify({"ok": True})

    PasswordResetToken.query.filter_by(user_id=user.id).delete()
    token = secrets.token_hex(32)
    expires_at = datetime.utcnow() + RESET_TOKEN_TTL
    db.session.add(PasswordResetToken(token=token, user_id=user.id, expires_at=expires_at))
    db.session.commit()

    try:
        subject, html = password_reset_email(
            user.name or user.email or 'User',
            token,
            expires_at,
            request_language(data, user.language or 'en'),
        )
        send_email(user.email, subject, html)
    except EmailError as e:
        current_app.logger.error('Failed to send password reset email: %s', e)
    return jsonify({"ok": True})


@main_bp.route('/api/auth/reset-password', methods=['POST'])
def reset_password():
    data = json_body()
    token = data.get('token')
    password = data.get('password')
    if not isinstance(token, str) or not token or not isinstance(password, str) or not password:
        abort(400, description='Token and password are required')
    if len(password) < MIN_PASSWORD_LENGTH:
        abort(400, description=f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    record = db.session.get(PasswordResetToken, token)
    if record is None:
        abort(400, description='Invalid or expired token')
    if record.expires_at < datetime.utcnow():
        db.session.delete(record)
        db.session.commit()
        abort(400, description='Invalid or expired token')
    user = db.session.get(User, record.user_id)
    if user is None:
        abort(400, description='Invalid or expired token')
    user.password_hash = generate_password_hash(password)
    PasswordResetToken.query.filter_by(user_id=user.id).delete()
    db.session.commit()
    current_app.logger.info('Password reset for user %s', user.id)
    return jsonify({"ok": True})
