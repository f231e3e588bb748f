from flask import request, g, jsonify, abort

from ..blueprints import main_bp
from ..models import db, ChecklistItem, Item
from ..membership import require_membership
from ..security import sanitize_text
from .auth import login_required, json_body
from .items import parse_category

# Seeded into a stash's checklist the first time it is read
DEFAULT_CHECKLIST_ITEMS = [
    ('Bottled water', 'WATER'),
    ('Water purification tablets', 'WATER'),
    ('Canned vegetables', 'CANNED_FOOD'),
    ('Canned fruits', 'CANNED_FOOD'),
    ('Canned meat or fish', 'CANNED_FOOD'),
    ('Canned soup', 'CANNED_FOOD'),
    ('Rice', 'DRY_GOODS'),
    ('Pasta', 'DRY_GOODS'),
    ('Oatmeal', 'DRY_GOODS'),
    ('Crackers', 'DRY_GOODS'),
    ('Peanut butter', 'DRY_GOODS'),
    ('Dried beans', 'DRY_GOODS'),
    ('First aid kit', 'FIRST_AID'),
    ('Prescription medications', 'FIRST_AID'),
    ('Pain relievers', 'FIRST_AID'),
    ('Bandages and gauze', 'FIRST_AID'),
    ('Antiseptic wipes', 'FIRST_AID'),
    ('Flashlight', 'TOOLS'),
    ('Batteries', 'TOOLS'),
    ('Can opener', 'TOOLS'),
    ('Multi-tool', 'TOOLS'),
    ('Battery-powered radio', 'TOOLS'),
    ('Toilet paper', 'HYGIENE'),
    ('Hand sanitizer', 'HYGIENE'),
    ('Soap', 'HYGIENE'),
    ('Toothbrush and toothpaste', 'HYGIENE'),
    ('Copies of important documents', 'DOCUMENTS'),
    ('Cash', 'DOCUMENTS'),
]


def serialize_checklist_item(c: ChecklistItem):
    return {
        'id': c.id,
        'stashId': c.stash_id,
        'name': c.name,
        'category': c.category,
        'isChecked': bool(c.is_checked),
        'isDefault': bool(c.is_default),
        'linkedItemId': c.linked_item_id,
        'createdAt': c.created_at.isoformat() if c.created_at else None,
    }


def _entry_for_member(entry_id) -> ChecklistItem:
    entry = db.session.get(ChecklistItem, entry_id)
    if entry is None:
        abort(404, description='Not found')
    require_membership(entry.stash_id, g.user.id)
    return entry


@main_bp.route('/api/checklist', methods=['GET'])
@login_required
def api_list_checklist():
    stash_id = request.args.get('stashId', type=int)
    if not stash_id:
        abort(400, description='stashId is required')
    require_membership(stash_id, g.user.id)

    if ChecklistItem.query.filter_by(stash_id=stash_id).count() == 0:
        for name, category in DEFAULT_CHECKLIST_ITEMS:
            db.session.add(ChecklistItem(stash_id=stash_id, name=name, category=category, is_default=True))
        db.session.commit()

    entries = (
        ChecklistItem.query
        .filter_by(stash_id=stash_id)
        .order_by(ChecklistItem.category.asc(), ChecklistItem.name.asc())
        .all()
    )
    return jsonify([serialize_checklist_item(c) for c in entries])


@main_bp.route('/api/checklist', methods=['POST'])
@login_required
def api_create_checklist_item():
    data = json_body()
    stash_id = data.get('stashId')
    if stash_id in (None, ''):
        abort(400, description='stashId is required')
    try:
        stash_id = int(stash_id)
    except (TypeError, ValueError):
        abort(400, description='Invalid stashId')
    require_membership(stash_id, g.user.id)
    name = sanitize_text(data.get('name')) if isinstance(data.get('name'), str) else ''
    if not name or not data.get('category'):
        abort(400, description='Name and category are required')
    category = parse_category(data.get('category'))

    entry = ChecklistItem(stash_id=stash_id, name=name, category=category, is_default=False)
    db.session.add(entry)
    db.session.commit()
    return jsonify(serialize_checklist_item(entry)), 201


@main_bp.route('/api/checklist', methods=['PATCH'])
@login_required
def api_update_checklist_item():
    data = json_body()
    try:
        entry_id = int(data.get('id'))
    except (TypeError, ValueError):
        abort(400, description='ID is required')
    entry = _entry_for_member(entry_id)

    if 'isChecked' in data:
        entry.is_checked = bool(data['isChecked'])
    if 'linkedItemId' in data:
        linked_id = data['linkedItemId']
        if linked_id in (None, ''):
            entry.linked_item_id = None
        else:
            try:
                linked = db.session.get(Item, int(linked_id))
            except (TypeError, ValueError):
                abort(400, description='Invalid linkedItemId')
            # Links never cross stash boundaries
            if linked is None or linked.stash_id != entry.stash_id:
                abort(400, description='Linked item must belong to the same stash')
            entry.linked_item_id = linked.id
    db.session.commit()
    return jsonify(serialize_checklist_item(entry))


@main_bp.route('/api/checklist', methods=['DELETE'])
@login_required
def api_delete_checklist_item():
    entry_id = request.args.get('id', type=int)
    if not entry_id:
        abort(400, description='ID is required')
    entry = _entry_for_member(entry_id)
    db.session.delete(entry)
    db.session.commit()
    return jsonify({"ok": True})
