from datetime import datetime, timedelta

import pytest

from prepper import create_app, db
from prepper.models import PushSubscription, NotificationLog
from prepper.push import PushError
from prepper.notifications import bucket_name, aggregate_messages, MESSAGES

SECRET = 'cron-secret'


def make_app(cron_secret=SECRET, vapid=True, dedupe=False):
    push = {'vapid_public_key': 'BPublicKey', 'vapid_private_key': 'private-key'} if vapid else {}
    test_config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SECRET_KEY': 'test',
        'PREPPER_CONFIG': {
            'push': push,
            'cron': {'secret': cron_secret},
            'notifications': {'dedupe_daily': dedupe},
        },
    }
    app = create_app(test_config)
    with app.app_context():
        db.create_all()
    return app


@pytest.fixture()
def app():
    return make_app()


class FakePush:
    """Stands in for send_push: records calls, answers per endpoint."""

    def __init__(self, gone=(), failing=()):
        self.calls = []
        self.gone = set(gone)
        self.failing = set(failing)

    def __call__(self, subscription, payload):
        self.calls.append((subscription.endpoint, payload))
        if subscription.endpoint in self.failing:
            raise PushError('push service unavailable')
        return subscription.endpoint not in self.gone


@pytest.fixture()
def fake_push(monkeypatch):
    fake = FakePush()
    monkeypatch.setattr('prepper.notifications.send_push', fake)
    return fake


def signed_in(app, email, language='en'):
    c = app.test_client()
    c.post('/api/auth/register', json={'email': email, 'password': 'password123', 'language': language})
    c.post('/api/auth/login', json={'email': email, 'password': 'password123'})
    return c


def subscribe(c, endpoint):
    resp = c.post('/api/push/subscribe', json={'endpoint': endpoint, 'keys': {'p256dh': 'p256', 'auth': 'auth'}})
    assert resp.status_code == 200
    return resp


def add_item(c, name, days):
    stash_id = c.get('/api/stashes').get_json()[0]['id']
    expiration = (datetime.utcnow().date() + timedelta(days=days)).isoformat() if days is not None else None
    resp = c.post('/api/items', json={'name': name, 'stashId': stash_id, 'expirationDate': expiration})
    assert resp.status_code == 201
    return resp.get_json()


def cron(c, path='/api/cron/check-expiring', **headers):
    return c.post(path, headers=headers)


def test_bucket_boundaries():
    assert bucket_name(-3) == 'expired'
    assert bucket_name(0) == 'expired'
    assert bucket_name(1) == 'tomorrow'
    assert bucket_name(2) == 'soon'
    assert bucket_name(7) == 'soon'
    assert bucket_name(8) is None


def test_aggregate_messages_are_localized():
    messages = aggregate_messages({'expired': ['Milk'], 'soon': ['Rice', 'Beans']}, MESSAGES['da'])
    assert [m['tag'] for m in messages] == ['expired-items', 'expiring-soon']
    assert messages[0]['body'] == 'Milk er udløbet'
    assert messages[0]['requireInteraction'] is True
    assert messages[1]['body'] == '2 varer udløber snart'
    assert messages[1]['requireInteraction'] is False


def test_cron_requires_secret(app, fake_push):
    c = app.test_client()
    assert cron(c).status_code == 401
    assert cron(c, Authorization='Bearer wrong').status_code == 401
    assert cron(c, **{'X-API-Key': 'wrong'}).status_code == 401
    assert cron(c, Authorization=f'Bearer {SECRET}').status_code == 200
    assert cron(c, **{'X-API-Key': SECRET}).status_code == 200
    assert c.get('/api/cron/check-expiring', headers={'Authorization': f'Bearer {SECRET}'}).status_code == 200
    assert cron(c, '/api/push/check-expiring', **{'X-API-Key': SECRET}).status_code == 200


def test_cron_rejects_everything_without_configured_secret(fake_push):
    app = make_app(cron_secret=None)
    c = app.test_client()
    assert cron(c, Authorization='Bearer ').status_code == 401
    assert cron(c, **{'X-API-Key': ''}).status_code == 401
    assert cron(c, Authorization='Bearer None').status_code == 401


def test_aggregated_run_sends_one_message_per_bucket(app, fake_push):
    alice = signed_in(app, 'alice@example.com')
    subscribe(alice, 'https://push.example/alice')
    add_item(alice, 'Milk', -1)
    add_item(alice, 'Bread', 1)
    add_item(alice, 'Rice', 5)
    add_item(alice, 'Beans', 6)
    add_item(alice, 'Honey', 30)
    add_item(alice, 'Salt', None)

    resp = cron(app.test_client(), Authorization=f'Bearer {SECRET}')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['success'] is True
    assert body['itemsChecked'] == 4
    assert body['notificationsSent'] == 3
    assert body['subscriptionsRemoved'] == 0

    payloads = {p['tag']: p for _, p in fake_push.calls}
    assert payloads['expired-items']['body'] == 'Milk has expired'
    assert payloads['expiring-tomorrow']['body'] == 'Bread expires tomorrow'
    assert payloads['expiring-soon']['body'] == '2 items expire soon'


def test_every_member_is_notified(app, fake_push):
    alice = signed_in(app, 'alice@example.com')
    bob = signed_in(app, 'bob@example.com', language='da')
    stash_id = alice.get('/api/stashes').get_json()[0]['id']
    inv = alice.post(f'/api/stashes/{stash_id}/invitations', json={'email': 'bob@example.com'}).get_json()
    bob.patch(f"/api/invitations/{inv['id']}", json={'action': 'accept'})
    subscribe(alice, 'https://push.example/alice')
    subscribe(bob, 'https://push.example/bob')
    add_item(alice, 'Milk', 0)

    body = cron(app.test_client(), **{'X-API-Key': SECRET}).get_json()
    assert body['notificationsSent'] == 2
    bodies = {endpoint: p['body'] for endpoint, p in fake_push.calls}
    assert bodies['https://push.example/alice'] == 'Milk has expired'
    assert bodies['https://push.example/bob'] == 'Milk er udløbet'


def test_gone_subscription_is_removed_once(app, fake_push):
    alice = signed_in(app, 'alice@example.com')
    subscribe(alice, 'https://push.example/phone')
    subscribe(alice, 'https://push.example/old-laptop')
    fake_push.gone.add('https://push.example/old-laptop')
    add_item(alice, 'Milk', -2)
    add_item(alice, 'Rice', 4)

    body = cron(app.test_client(), Authorization=f'Bearer {SECRET}').get_json()
    assert body['notificationsSent'] == 2
    assert body['subscriptionsRemoved'] == 1
    attempts = [e for e, _ in fake_push.calls if e.endswith('old-laptop')]
    assert len(attempts) == 1
    with app.app_context():
        assert [s.endpoint for s in PushSubscription.query.all()] == ['https://push.example/phone']

    fake_push.calls.clear()
    body = cron(app.test_client(), Authorization=f'Bearer {SECRET}').get_json()
    assert body['subscriptionsRemoved'] == 0
    assert all(not e.endswith('old-laptop') for e, _ in fake_push.calls)


def test_transient_failures_keep_subscription(app, fake_push):
    alice = signed_in(app, 'alice@example.com')
    subscribe(alice, 'https://push.example/flaky')
    subscribe(alice, 'https://push.example/phone')
    fake_push.failing.add('https://push.example/flaky')
    add_item(alice, 'Milk', -1)

    body = cron(app.test_client(), Authorization=f'Bearer {SECRET}').get_json()
    assert body['notificationsSent'] == 1
    assert body['subscriptionsRemoved'] == 0
    with app.app_context():
        assert PushSubscription.query.count() == 2


def test_missing_vapid_keys_sends_nothing(fake_push):
    app = make_app(vapid=False)
    alice = signed_in(app, 'alice@example.com')
    subscribe(alice, 'https://push.example/alice')
    add_item(alice, 'Milk', -1)
    body = cron(app.test_client(), Authorization=f'Bearer {SECRET}').get_json()
    assert body['itemsChecked'] == 1
    assert body['notificationsSent'] == 0
    assert fake_push.calls == []
    with app.app_context():
        assert PushSubscription.query.count() == 1


def test_threshold_run_only_notifies_on_threshold_days(app, fake_push):
    alice = signed_in(app, 'alice@example.com')
    subscribe(alice, 'https://push.example/alice')
    milk = add_item(alice, 'Milk', 3)
    add_item(alice, 'Rice', 5)
    bread = add_item(alice, 'Bread', 1)

    body = cron(app.test_client(), '/api/push/check-expiring', **{'X-API-Key': SECRET}).get_json()
    assert body['itemsChecked'] == 3
    assert body['notificationsSent'] == 2
    payloads = {p['tag']: p for _, p in fake_push.calls}
    assert payloads[f"expiring-{milk['id']}-3"]['body'] == 'Milk expires in 3 days'
    assert payloads[f"expiring-{milk['id']}-3"]['requireInteraction'] is False
    assert payloads[f"expiring-{bread['id']}-1"]['body'] == 'Bread expires tomorrow!'
    assert payloads[f"expiring-{bread['id']}-1"]['url'] == '/expiring'


def test_runs_repeat_without_dedupe(app, fake_push):
    alice = signed_in(app, 'alice@example.com')
    subscribe(alice, 'https://push.example/alice')
    add_item(alice, 'Milk', -1)
    cron(app.test_client(), Authorization=f'Bearer {SECRET}')
    body = cron(app.test_client(), Authorization=f'Bearer {SECRET}').get_json()
    assert body['notificationsSent'] == 1
    assert len(fake_push.calls) == 2


def test_daily_dedupe_suppresses_repeats(fake_push):
    app = make_app(dedupe=True)
    alice = signed_in(app, 'alice@example.com')
    subscribe(alice, 'https://push.example/alice')
    add_item(alice, 'Milk', -1)
    first = cron(app.test_client(), Authorization=f'Bearer {SECRET}').get_json()
    second = cron(app.test_client(), Authorization=f'Bearer {SECRET}').get_json()
    assert first['notificationsSent'] == 1
    assert second['notificationsSent'] == 0
    with app.app_context():
        assert NotificationLog.query.count() == 1


def test_subscribe_upserts_by_endpoint(app):
    alice = signed_in(app, 'alice@example.com')
    bob = signed_in(app, 'bob@example.com')
    assert alice.post('/api/push/subscribe', json={'endpoint': 'https://push.example/x'}).status_code == 400
    subscribe(alice, 'https://push.example/shared')
    subscribe(bob, 'https://push.example/shared')
    with app.app_context():
        subs = PushSubscription.query.all()
        assert len(subs) == 1
    bob_id = bob.get('/api/auth/me').get_json()['user']['id']
    with app.app_context():
        assert PushSubscription.query.one().user_id == bob_id

    assert bob.delete('/api/push/subscribe', json={'endpoint': 'https://push.example/shared'}).status_code == 200
    with app.app_context():
        assert PushSubscription.query.count() == 0


def test_public_key_and_test_push(app, fake_push):
    anon = app.test_client()
    assert anon.get('/api/push/vapid-public-key').get_json() == {'publicKey': 'BPublicKey'}

    alice = signed_in(app, 'alice@example.com')
    assert alice.post('/api/push/test').status_code == 400
    subscribe(alice, 'https://push.example/alice')
    resp = alice.post('/api/push/test')
    assert resp.status_code == 200
    assert resp.get_json()['sent'] == 1
    assert resp.get_json()['total'] == 1
    assert fake_push.calls[0][1]['body'] == 'Notifications are working'

    add_item(alice, 'Milk', -1)
    alice.post('/api/push/test')
    assert fake_push.calls[-1][1]['body'] == 'Milk has expired'


def test_public_key_unavailable_without_vapid():
    app = make_app(vapid=False)
    assert app.test_client().get('/api/push/vapid-public-key').status_code == 503


def test_service_worker_and_manifest(app):
    c = app.test_client()
    sw = c.get('/push-sw.js')
    assert sw.status_code == 200
    assert 'Prepper: ' in sw.get_data(as_text=True)
    assert sw.headers['Service-Worker-Allowed'] == '/'
    manifest = c.get('/manifest.webmanifest')
    assert manifest.status_code == 200
    assert manifest.mimetype == 'application/manifest+json'
