from flask import current_app, request, g, jsonify, abort
from datetime import datetime

from ..blueprints import main_bp
from ..models import db, User, Stash, StashMember, StashInvitation, Item, ChecklistItem, Photo
from ..membership import require_membership, has_role, ensure_not_last_stash, members_without_other_stash
from ..security import sanitize_text, normalize_email
from ..mailer import send_email, invitation_email, EmailError
from .auth import login_required, json_body, request_language
from .photos import delete_photo_objects


def _member_dict(m: StashMember):
    return {
        'userId': m.user.id,
        'name': m.user.name,
        'email': m.user.email,
        'role': m.role,
        'joinedAt': m.joined_at.isoformat() if m.joined_at else None,
    }


def serialize_invitation(inv: StashInvitation):
    return {
        'id': inv.id,
        'stashId': inv.stash_id,
        'email': inv.email,
        'userId': inv.user_id,
        'status': inv.status,
        'createdAt': inv.created_at.isoformat() if inv.created_at else None,
        'expiresAt': inv.expires_at.isoformat() if inv.expires_at else None,
    }


def expire_stale_invitations(stash_id=None):
    """Mark PENDING invitations past their expiry as EXPIRED."""
    q = StashInvitation.query.filter(
        StashInvitation.status == 'PENDING',
        StashInvitation.expires_at < datetime.utcnow(),
    )
    if stash_id is not None:
        q = q.filter(StashInvitation.stash_id == stash_id)
    return q.update({StashInvitation.status: 'EXPIRED'}, synchronize_session=False)


def _stash_name_from(data: dict) -> str:
    name = data.get('name')
    name = sanitize_text(name) if isinstance(name, str) else ''
    if not name:
        abort(400, description='Name is required')
    return name[:128]


@main_bp.route('/api/stashes', methods=['GET'])
@login_required
def api_list_stashes():
    memberships = (
        StashMember.query
        .filter_by(user_id=g.user.id)
        .order_by(StashMember.joined_at.asc(), StashMember.id.asc())
        .all()
    )
    return jsonify([
        {
            'id': m.stash.id,
            'name': m.stash.name,
            'role': m.role,
            'memberCount': len(m.stash.members),
        }
        for m in memberships
    ])


@main_bp.route('/api/stashes', methods=['POST'])
@login_required
def api_create_stash():
    name = _stash_name_from(json_body())
    stash = Stash(name=name)
    db.session.add(stash)
    db.session.add(StashMember(stash=stash, user_id=g.user.id, role='OWNER'))
    db.session.commit()
    return jsonify({'id': stash.id, 'name': stash.name, 'role': 'OWNER', 'memberCount': 1}), 201


@main_bp.route('/api/stashes/<int:stash_id>', methods=['GET'])
@login_required
def api_get_stash(stash_id):
    membership = require_membership(stash_id, g.user.id)
    stash = membership.stash
    expire_stale_invitations(stash_id)
    db.session.commit()
    pending = StashInvitation.query.filter_by(stash_id=stash_id, status='PENDING').all()
    return jsonify({
        'id': stash.id,
        'name': stash.name,
        'role': membership.role,
        'members': [_member_dict(m) for m in stash.members],
        'pendingInvitations': [serialize_invitation(i) for i in pending],
        'itemCount': Item.query.filter_by(stash_id=stash_id).count(),
        'checklistCount': ChecklistItem.query.filter_by(stash_id=stash_id).count(),
    })


@main_bp.route('/api/stashes/<int:stash_id>', methods=['PATCH'])
@login_required
def api_rename_stash(stash_id):
    membership = require_membership(stash_id, g.user.id, 'ADMIN')
    membership.stash.name = _stash_name_from(json_body())
    db.session.commit()
    return jsonify({'id': membership.stash.id, 'name': membership.stash.name})


@main_bp.route('/api/stashes/<int:stash_id>', methods=['DELETE'])
@login_required
def api_delete_stash(stash_id):
    membership = require_membership(stash_id, g.user.id, 'OWNER')
    ensure_not_last_stash(g.user.id, 'Cannot delete your only stash')
    if members_without_other_stash(stash_id):
        abort(400, description='Cannot delete a stash that is the only stash of another member')
    photos = Photo.query.join(Item).filter(Item.stash_id == stash_id).all()
    delete_photo_objects(photos)
    db.session.delete(membership.stash)
    db.session.commit()
    current_app.logger.info('Stash %s deleted by user %s', stash_id, g.user.id)
    return jsonify({"ok": True})


@main_bp.route('/api/stashes/<int:stash_id>/members', methods=['GET'])
@login_required
def api_list_members(stash_id):
    require_membership(stash_id, g.user.id)
    members = StashMember.query.filter_by(stash_id=stash_id).order_by(StashMember.joined_at.asc()).all()
    return jsonify([_member_dict(m) for m in members])


@main_bp.route('/api/stashes/<int:stash_id>/members/<int:user_id>', methods=['PATCH'])
@login_required
def api_change_member_role(stash_id, user_id):
    require_membership(stash_id, g.user.id, 'OWNER')
    role = json_body().get('role')
    if role not in ('ADMIN', 'MEMBER'):
        abort(400, description='Invalid role. Must be ADMIN or MEMBER.')
    if user_id == g.user.id:
        abort(400, description='Cannot change your own role')
    target = StashMember.query.filter_by(stash_id=stash_id, user_id=user_id).first()
    if target is None:
        abort(404, description='Member not found')
    target.role = role
    db.session.commit()
    return jsonify(_member_dict(target))


@main_bp.route('/api/stashes/<int:stash_id>/members/<int:user_id>', methods=['DELETE'])
@login_required
def api_remove_member(stash_id, user_id):
    current = require_membership(stash_id, g.user.id)
    target = StashMember.query.filter_by(stash_id=stash_id, user_id=user_id).first()
    if target is None:
        abort(404, description='Member not found')
    is_self = user_id == g.user.id
    if is_self:
        if target.role == 'OWNER':
            abort(400, description='Owner cannot leave. Delete the stash or transfer ownership.')
        ensure_not_last_stash(user_id, 'Cannot leave your only stash')
    else:
        if not has_role(current, 'ADMIN'):
            abort(403, description='Forbidden')
        # Admins manage plain members only
        if current.role == 'ADMIN' and target.role != 'MEMBER':
            abort(403, description='Forbidden')
        ensure_not_last_stash(user_id, 'Cannot remove a member from their only stash')
    db.session.delete(target)
    db.session.commit()
    return jsonify({"ok": True})


@main_bp.route('/api/stashes/<int:stash_id>/invitations', methods=['GET'])
@login_required
def api_list_stash_invitations(stash_id):
    require_membership(stash_id, g.user.id, 'ADMIN')
    expire_stale_invitations(stash_id)
    db.session.commit()
    invitations = (
        StashInvitation.query
        .filter_by(stash_id=stash_id, status='PENDING')
        .order_by(StashInvitation.created_at.desc())
        .all()
    )
    return jsonify([serialize_invitation(i) for i in invitations])


@main_bp.route('/api/stashes/<int:stash_id>/invitations', methods=['POST'])
@login_required
def api_create_invitation(stash_id):
    membership = require_membership(stash_id, g.user.id, 'ADMIN')
    data = json_body()
    raw_email = data.get('email')
    raw_user_id = data.get('userId')
    if not raw_email and raw_user_id in (None, ''):
        abort(400, description='Either email or userId is required')

    email = None
    if raw_email:
        email = normalize_email(raw_email)
        if not email:
            abort(400, description='Invalid email address')

    target_user = None
    if raw_user_id not in (None, ''):
        try:
            target_user = db.session.get(User, int(raw_user_id))
        except (TypeError, ValueError):
            abort(400, description='Invalid userId')
        if target_user is None:
            abort(404, description='User not found')
    elif email:
        # An email that already has an account is tied to that account
        target_user = User.query.filter_by(email=email).first()

    if target_user and StashMember.query.filter_by(stash_id=stash_id, user_id=target_user.id).first():
        abort(400, description='User is already a member')

    expire_stale_invitations(stash_id)
    targets = []
    if email:
        targets.append(StashInvitation.email == email)
    if target_user:
        targets.append(StashInvitation.user_id == target_user.id)
        if target_user.email:
            targets.append(StashInvitation.email == target_user.email.lower())
    existing = StashInvitation.query.filter(
        StashInvitation.stash_id == stash_id,
        StashInvitation.status == 'PENDING',
        db.or_(*targets),
    ).first()
    if existing:
        abort(400, description='An invitation is already pending')

    invitation = StashInvitation(
        stash_id=stash_id,
        email=email,
        user_id=target_user.id if target_user else None,
        invited_by=g.user.id,
    )
    db.session.add(invitation)
    db.session.commit()

    recipient = email or (target_user.email if target_user else None)
    if recipient:
        try:
            subject, html = invitation_email(
                membership.stash.name,
                g.user.name or g.user.email or 'Someone',
                g.user.email or '',
                invitation.id,
                invitation.expires_at,
                request_language(data, g.user.language or 'en'),
            )
            send_email(recipient, subject, html)
        except EmailError as e:
            current_app.logger.error('Failed to send invitation email: %s', e)
    return jsonify(serialize_invitation(invitation)), 201


@main_bp.route('/api/stashes/<int:stash_id>/invitations', methods=['DELETE'])
@login_required
def api_cancel_invitation(stash_id):
    require_membership(stash_id, g.user.id, 'ADMIN')
    invitation_id = request.args.get('invitationId')
    if not invitation_id:
        abort(400, description='invitationId is required')
    invitation = db.session.get(StashInvitation, invitation_id)
    if invitation is None or invitation.stash_id != stash_id:
        abort(404, description='Not found')
    db.session.delete(invitation)
    db.session.commit()
    return jsonify({"ok": True})
