import os
import uuid
from flask import request, g, jsonify, abort, current_app, Response
from werkzeug.utils import secure_filename

from ..blueprints import main_bp
from ..models import db, Item, Photo
from ..membership import require_membership
from ..storage import get_storage, StorageError
from .auth import login_required

ALLOWED_IMAGE_TYPES = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'image/heic': 'heic',
}


def serialize_photo(p: Photo):
    return {
        'id': p.id,
        'itemId': p.item_id,
        'storageKey': p.storage_key,
        'originalName': p.original_name,
        'mimeType': p.mime_type,
        'size': p.size,
        'url': f'/api/photos/{p.id}',
        'createdAt': p.created_at.isoformat() if p.created_at else None,
    }


def delete_photo_objects(photos):
    """Remove stored objects for photos; failures are logged and skipped."""
    if not photos:
        return
    storage = get_storage()
    for photo in photos:
        try:
            storage.delete(photo.storage_key)
        except StorageError as e:
            current_app.logger.error('Failed to delete photo %s from storage: %s', photo.id, e)


def _photo_for_member(photo_id) -> Photo:
    photo = db.session.get(Photo, photo_id)
    if photo is None:
        abort(404, description='Photo not found')
    require_membership(photo.item.stash_id, g.user.id)
    return photo


@main_bp.route('/api/photos/upload', methods=['POST'])
@login_required
def api_upload_photo():
    file = request.files.get('file')
    item_id = request.form.get('itemId', type=int)
    if not file or not getattr(file, 'filename', '') or not item_id:
        abort(400, description='Missing file or itemId')
    mime_type = (file.mimetype or '').lower()
    if mime_type not in ALLOWED_IMAGE_TYPES:
        abort(400, description='Only image uploads are allowed')
    item = db.session.get(Item, item_id)
    if item is None:
        abort(404, description='Item not found')
    require_membership(item.stash_id, g.user.id)

    filename = secure_filename(file.filename)
    extension = os.path.splitext(filename)[1].lstrip('.').lower() or ALLOWED_IMAGE_TYPES[mime_type]
    key = f"{item.stash_id}/{item.id}/{uuid.uuid4().hex}.{extension}"
    data = file.read()
    get_storage().put(key, data, mime_type)

    photo = Photo(
        item_id=item.id,
        storage_key=key,
        original_name=filename or None,
        mime_type=mime_type,
        size=len(data),
    )
    db.session.add(photo)
    db.session.commit()
    return jsonify({"ok": True, "photo": serialize_photo(photo)}), 201


@main_bp.route('/api/photos/<int:photo_id>', methods=['GET'])
@login_required
def api_get_photo(photo_id):
    photo = _photo_for_member(photo_id)
    data = get_storage().get(photo.storage_key)
    resp = Response(data, mimetype=photo.mime_type)
    resp.headers['Cache-Control'] = 'private, max-age=31536000'
    resp.headers['X-Content-Type-Options'] = 'nosniff'
    return resp


@main_bp.route('/api/photos/<int:photo_id>', methods=['DELETE'])
@login_required
def api_delete_photo(photo_id):
    photo = _photo_for_member(photo_id)
    delete_photo_objects([photo])
    db.session.delete(photo)
    db.session.commit()
    return jsonify({"ok": True})
