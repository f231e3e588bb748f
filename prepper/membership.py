"""Stash membership and role checks.

Every check reads the membership row from the database; roles are never
cached in the session. A caller who is not a member of a stash gets a 404 so
that the stash's existence is not revealed, while a member whose role is too
low gets a 403.
"""
from flask import abort
from .models import db, StashMember

ROLE_RANK = {'MEMBER': 1, 'ADMIN': 2, 'OWNER': 3}


def get_membership(stash_id, user_id):
    if stash_id is None or user_id is None:
        return None
    return StashMember.query.filter_by(stash_id=stash_id, user_id=user_id).first()


def has_role(membership, role: str) -> bool:
    return ROLE_RANK.get(membership.role, 0) >= ROLE_RANK[role]


def require_membership(stash_id, user_id, role: str = 'MEMBER'):
    membership = get_membership(stash_id, user_id)
    if membership is None:
        abort(404, description='Not found')
    if not has_role(membership, role):
        abort(403, description='Forbidden')
    return membership


def stash_count(user_id) -> int:
    return StashMember.query.filter_by(user_id=user_id).count()


def ensure_not_last_stash(user_id, message: str = 'Cannot leave your only stash'):
    if stash_count(user_id) <= 1:
        abort(400, description=message)


def members_without_other_stash(stash_id):
    """Members of stash_id for whom it is the only stash they belong to."""
    counts = dict(
        db.session.query(StashMember.user_id, db.func.count(StashMember.id))
        .filter(StashMember.user_id.in_(
            db.select(StashMember.user_id).where(StashMember.stash_id == stash_id)
        ))
        .group_by(StashMember.user_id)
        .all()
    )
    return [uid for uid, n in counts.items() if n <= 1]
