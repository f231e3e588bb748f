from flask import current_app, request, g, jsonify, abort
from datetime import datetime

from ..blueprints import main_bp
from ..models import db, StashInvitation, StashMember
from .auth import login_required, json_body
from .stashes import expire_stale_invitations


def _is_for_user(invitation: StashInvitation, user) -> bool:
    if invitation.user_id and invitation.user_id == user.id:
        return True
    return bool(invitation.email and user.email and invitation.email == user.email.lower())


@main_bp.route('/api/invitations', methods=['GET'])
@login_required
def api_my_invitations():
    expire_stale_invitations()
    db.session.commit()
    targets = [StashInvitation.user_id == g.user.id]
    if g.user.email:
        targets.append(StashInvitation.email == g.user.email.lower())
    invitations = (
        StashInvitation.query
        .filter(StashInvitation.status == 'PENDING', db.or_(*targets))
        .order_by(StashInvitation.created_at.desc())
        .all()
    )
    return jsonify([
        {
            'id': inv.id,
            'stashId': inv.stash_id,
            'stashName': inv.stash.name,
            'createdAt': inv.created_at.isoformat() if inv.created_at else None,
            'expiresAt': inv.expires_at.isoformat() if inv.expires_at else None,
        }
        for inv in invitations
    ])


@main_bp.route('/api/invitations/<invitation_id>', methods=['GET'])
def api_get_invitation(invitation_id):
    invitation = db.session.get(StashInvitation, invitation_id)
    if request.args.get('preview') == 'true':
        # Used by the accept page before login to prefill the email field
        if invitation is None:
            abort(404, description='Invitation not found')
        return jsonify({'stashName': invitation.stash.name, 'email': invitation.email})

    if g.get('user') is None:
        abort(401, description='Unauthorized')
    if invitation is None:
        abort(404, description='Invitation not found')
    if not _is_for_user(invitation, g.user):
        return jsonify({
            "ok": False,
            "error": "This invitation was sent to another account",
            "invitedEmail": invitation.email,
        }), 403
    return jsonify({
        'id': invitation.id,
        'stashId': invitation.stash_id,
        'stashName': invitation.stash.name,
        'status': invitation.status,
        'expiresAt': invitation.expires_at.isoformat() if invitation.expires_at else None,
        'isExpired': datetime.utcnow() > invitation.expires_at,
    })


@main_bp.route('/api/invitations/<invitation_id>', methods=['PATCH'])
@login_required
def api_respond_to_invitation(invitation_id):
    action = json_body().get('action')
    if action not in ('accept', 'decline'):
        abort(400, description="Invalid action. Must be 'accept' or 'decline'.")
    invitation = db.session.get(StashInvitation, invitation_id)
    if invitation is None:
        abort(404, description='Invitation not found')
    if not _is_for_user(invitation, g.user):
        abort(403, description='Forbidden')
    if invitation.status != 'PENDING':
        abort(400, description='Invitation is no longer pending')
    if datetime.utcnow() > invitation.expires_at:
        invitation.status = 'EXPIRED'
        db.session.commit()
        abort(400, description='Invitation has expired')

    if action == 'decline':
        invitation.status = 'DECLINED'
        db.session.commit()
        return jsonify({"ok": True, "message": "Invitation declined"})

    existing = StashMember.query.filter_by(stash_id=invitation.stash_id, user_id=g.user.id).first()
    if existing is None:
        db.session.add(StashMember(stash_id=invitation.stash_id, user_id=g.user.id, role='MEMBER'))
    invitation.status = 'ACCEPTED'
    if invitation.user_id is None:
        invitation.user_id = g.user.id
    # Other invitations to the same stash are settled by this one
    others = [StashInvitation.user_id == g.user.id]
    if g.user.email:
        others.append(StashInvitation.email == g.user.email.lower())
    StashInvitation.query.filter(
        StashInvitation.stash_id == invitation.stash_id,
        StashInvitation.status == 'PENDING',
        StashInvitation.id != invitation.id,
        db.or_(*others),
    ).update({StashInvitation.status: 'ACCEPTED'}, synchronize_session=False)
    db.session.commit()
    current_app.logger.info('User %s joined stash %s', g.user.id, invitation.stash_id)
    return jsonify({"ok": True, "stashId": invitation.stash_id, "message": "You have joined the stash"})
