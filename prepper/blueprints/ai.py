from flask import current_app, g, jsonify, abort
from datetime import datetime
import json

from ..blueprints import main_bp
from ..models import db, Photo, CATEGORIES
from ..membership import get_membership
from ..vision import analyze_images, AnalysisError
from .auth import login_required, json_body, request_language


def _apply_analysis(photo: Photo, analysis: dict):
    """Store the analysis on the photo and fill item fields that are still empty."""
    photo.ai_analysis = json.dumps(analysis)
    item = photo.item
    item.ai_extracted = True
    if analysis.get('description') and not item.description:
        item.description = str(analysis['description'])
    if analysis.get('expirationDate') and not item.expiration_date:
        try:
            item.expiration_date = datetime.strptime(str(analysis['expirationDate'])[:10], '%Y-%m-%d').date()
        except ValueError:
            current_app.logger.warning('Ignoring unreadable expiration date %r', analysis['expirationDate'])
    if analysis.get('category') and item.category == 'OTHER':
        category = str(analysis['category']).upper()
        if category in CATEGORIES:
            item.category = category


@main_bp.route('/api/ai/analyze', methods=['POST'])
@login_required
def api_analyze():
    data = json_body()
    image = data.get('imageBase64')
    mime_type = data.get('mimeType')
    if not image or not mime_type:
        abort(400, description='Image data and mime type are required')

    front = {'base64': image, 'mimeType': mime_type}
    expiration = None
    if data.get('expirationImageBase64') and data.get('expirationMimeType'):
        expiration = {'base64': data['expirationImageBase64'], 'mimeType': data['expirationMimeType']}

    try:
        analysis = analyze_images(front, expiration, request_language(data, g.user.language or 'en'))
    except AnalysisError as e:
        current_app.logger.error('Image analysis failed: %s', e)
        return jsonify({"ok": False, "error": "Failed to analyze image", "details": str(e)}), 500

    photo_id = data.get('photoId')
    if photo_id not in (None, ''):
        try:
            photo = db.session.get(Photo, int(photo_id))
        except (TypeError, ValueError):
            photo = None
        # Photos outside the caller's stashes are left untouched
        if photo is not None and get_membership(photo.item.stash_id, g.user.id) is not None:
            _apply_analysis(photo, analysis)
            db.session.commit()
    return jsonify(analysis)
