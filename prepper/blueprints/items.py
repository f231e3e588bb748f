from flask import request, g, jsonify, abort, current_app
from datetime import datetime

from ..blueprints import main_bp
from ..models import db, Item, ChecklistItem, CATEGORIES
from ..membership import require_membership
from ..expiration import expiration_status, days_until, window_end
from ..security import sanitize_text
from .auth import login_required, json_body
from .photos import serialize_photo, delete_photo_objects


def parse_category(value, default=None):
    if value in (None, ''):
        return default
    category = str(value).strip().upper()
    if category not in CATEGORIES:
        abort(400, description=f"Invalid category. Must be one of: {', '.join(CATEGORIES)}")
    return category


def parse_quantity(value, default=1):
    if value in (None, ''):
        return default
    if isinstance(value, bool):
        abort(400, description='Quantity must be a whole number of at least 1')
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        abort(400, description='Quantity must be a whole number of at least 1')
    if quantity < 1 or quantity != float(value):
        abort(400, description='Quantity must be a whole number of at least 1')
    return quantity


def parse_expiration(value):
    """Accept YYYY-MM-DD (or an ISO timestamp, keeping its date part)."""
    if value in (None, ''):
        return None
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        abort(400, description='expirationDate must be formatted as YYYY-MM-DD')


def serialize_item(i: Item, now=None):
    return {
        'id': i.id,
        'stashId': i.stash_id,
        'name': i.name,
        'description': i.description,
        'category': i.category,
        'quantity': i.quantity,
        'expirationDate': i.expiration_date.isoformat() if i.expiration_date else None,
        'expirationStatus': expiration_status(i.expiration_date, now),
        'daysUntilExpiration': days_until(i.expiration_date, now),
        'aiExtracted': bool(i.ai_extracted),
        'createdAt': i.created_at.isoformat() if i.created_at else None,
        'updatedAt': i.updated_at.isoformat() if i.updated_at else None,
        'photos': [serialize_photo(p) for p in i.photos],
    }


def _item_for_member(item_id) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        abort(404, description='Item not found')
    require_membership(item.stash_id, g.user.id)
    return item


@main_bp.route('/api/items', methods=['GET'])
@login_required
def api_list_items():
    stash_id = request.args.get('stashId', type=int)
    if not stash_id:
        abort(400, description='stashId is required')
    require_membership(stash_id, g.user.id)

    q = Item.query.filter(Item.stash_id == stash_id)
    category = parse_category(request.args.get('category'))
    if category:
        q = q.filter(Item.category == category)
    search = sanitize_text(request.args.get('search', ''))
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(Item.name.ilike(pattern), Item.description.ilike(pattern)))
    if request.args.get('expiringSoon') == 'true':
        q = q.filter(Item.expiration_date >= datetime.utcnow().date(), Item.expiration_date <= window_end())
    items = q.order_by(
        Item.expiration_date.is_(None),
        Item.expiration_date.asc(),
        Item.created_at.desc(),
    ).all()
    now = datetime.utcnow()
    return jsonify([serialize_item(i, now) for i in items])


@main_bp.route('/api/items', methods=['POST'])
@login_required
def api_create_item():
    data = json_body()
    name = sanitize_text(data.get('name')) if isinstance(data.get('name'), str) else ''
    if not name:
        abort(400, description='Name is required')
    stash_id = data.get('stashId')
    if stash_id in (None, ''):
        abort(400, description='stashId is required')
    try:
        stash_id = int(stash_id)
    except (TypeError, ValueError):
        abort(400, description='Invalid stashId')
    require_membership(stash_id, g.user.id)

    description = data.get('description')
    item = Item(
        stash_id=stash_id,
        name=name,
        description=(sanitize_text(description) or None) if isinstance(description, str) else None,
        category=parse_category(data.get('category'), 'OTHER'),
        quantity=parse_quantity(data.get('quantity')),
        expiration_date=parse_expiration(data.get('expirationDate')),
        ai_extracted=bool(data.get('aiExtracted', False)),
    )
    db.session.add(item)
    db.session.commit()
    return jsonify(serialize_item(item)), 201


@main_bp.route('/api/items/<int:item_id>', methods=['GET'])
@login_required
def api_get_item(item_id):
    return jsonify(serialize_item(_item_for_member(item_id)))


@main_bp.route('/api/items/<int:item_id>', methods=['PATCH'])
@login_required
def api_update_item(item_id):
    item = _item_for_member(item_id)
    data = json_body()
    if 'name' in data:
        name = sanitize_text(data['name']) if isinstance(data['name'], str) else ''
        if not name:
            abort(400, description='Name cannot be empty')
        item.name = name
    if 'description' in data:
        description = data['description']
        item.description = (sanitize_text(description) or None) if isinstance(description, str) else None
    if 'category' in data:
        item.category = parse_category(data['category'], 'OTHER')
    if 'quantity' in data:
        item.quantity = parse_quantity(data['quantity'])
    if 'expirationDate' in data:
        item.expiration_date = parse_expiration(data['expirationDate'])
    db.session.commit()
    return jsonify(serialize_item(item))


@main_bp.route('/api/items/<int:item_id>', methods=['DELETE'])
@login_required
def api_delete_item(item_id):
    item = _item_for_member(item_id)
    stash_id = item.stash_id
    delete_photo_objects(list(item.photos))
    ChecklistItem.query.filter_by(linked_item_id=item.id).update({ChecklistItem.linked_item_id: None})
    db.session.delete(item)
    db.session.commit()
    current_app.logger.info('Item %s deleted from stash %s', item_id, stash_id)
    return jsonify({"ok": True})
