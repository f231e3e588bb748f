from flask import Blueprint, current_app, Response, jsonify, request
from werkzeug.exceptions import HTTPException
import json

from ..models import db

# Single app-wide blueprint; route modules attach their endpoints to it on import
main_bp = Blueprint('main', __name__)


def error_response(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


@main_bp.app_errorhandler(HTTPException)
def handle_http_error(e):
    if not request.path.startswith('/api/'):
        return e
    return error_response(e.description or e.name, e.code or 500)


@main_bp.app_errorhandler(Exception)
def handle_unexpected_error(e):
    current_app.logger.exception('Unhandled error on %s %s', request.method, request.path)
    db.session.rollback()
    return error_response('Internal server error', 500)


@main_bp.route('/manifest.webmanifest')
def manifest_webmanifest():
    manifest = {
        "name": "Prepper Helper",
        "short_name": "Prepper",
        "start_url": "/",
        "scope": "/",
        "display": "standalone",
        "background_color": "#FAFAF8",
        "theme_color": "#F97316",
        "icons": [
            {"src": "/icon.png", "type": "image/png", "sizes": "512x512", "purpose": "any"}
        ]
    }
    return Response(json.dumps(manifest), mimetype='application/manifest+json')


PUSH_SERVICE_WORKER = r"""
self.addEventListener('push', function (event) {
  if (!event.data) {
    return;
  }
  const data = event.data.json();
  const title = data.title.startsWith('Prepper') ? data.title : 'Prepper: ' + data.title;
  const options = {
    body: data.body,
    icon: '/icon.png',
    badge: '/icon.png',
    vibrate: [200, 100, 200],
    data: { url: data.url || '/' },
    actions: data.actions || [],
    tag: data.tag || 'default',
    requireInteraction: data.requireInteraction || false,
    silent: false
  };
  event.waitUntil(self.registration.showNotification(title, options));
});

self.addEventListener('notificationclick', function (event) {
  event.notification.close();
  const url = (event.notification.data && event.notification.data.url) || '/';
  event.waitUntil(
    clients.matchAll({ type: 'window', includeUncontrolled: true }).then(function (clientList) {
      for (const client of clientList) {
        if (client.url.includes(self.location.origin) && 'focus' in client) {
          client.navigate(url);
          return client.focus();
        }
      }
      if (clients.openWindow) {
        return clients.openWindow(url);
      }
    })
  );
});

self.addEventListener('install', function () {
  self.skipWaiting();
});

self.addEventListener('activate', function (event) {
  event.waitUntil(clients.claim());
});
"""


@main_bp.route('/push-sw.js')
def push_service_worker():
    resp = Response(PUSH_SERVICE_WORKER, mimetype='application/javascript')
    # Ensure browsers always revalidate the worker script
    resp.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate'
    resp.headers['Service-Worker-Allowed'] = '/'
    return resp
