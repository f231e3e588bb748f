import json

import pytest
from botocore.exceptions import ClientError
from pywebpush import WebPushException

from prepper import create_app
from prepper.push import send_push, build_payload, PushError
from prepper.storage import PhotoStorage, StorageError


def make_app(vapid=True):
    push = {'vapid_public_key': 'BPublicKey', 'vapid_private_key': 'private-key'} if vapid else {}
    test_config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SECRET_KEY': 'test',
        'PREPPER_CONFIG': {'push': push},
    }
    return create_app(test_config)


class Sub:
    id = 1
    endpoint = 'https://push.example/abc'
    p256dh = 'p256'
    auth = 'auth'


class FakeHTTPResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.text = ''


def test_send_push_success(monkeypatch):
    sent = {}

    def fake_webpush(subscription_info, data, vapid_private_key, vapid_claims):
        sent.update(subscription_info=subscription_info, data=data, claims=vapid_claims)

    monkeypatch.setattr('prepper.push.webpush', fake_webpush)
    with make_app().app_context():
        assert send_push(Sub(), build_payload('Title', 'Body', tag='t')) is True
    assert sent['subscription_info']['keys'] == {'p256dh': 'p256', 'auth': 'auth'}
    assert json.loads(sent['data'])['tag'] == 't'


@pytest.mark.parametrize('status', [404, 410])
def test_send_push_reports_gone(monkeypatch, status):
    def fake_webpush(**kwargs):
        raise WebPushException('gone', response=FakeHTTPResponse(status))

    monkeypatch.setattr('prepper.push.webpush', fake_webpush)
    with make_app().app_context():
        assert send_push(Sub(), build_payload('T', 'B')) is False


def test_send_push_other_failures_raise(monkeypatch):
    def fake_webpush(**kwargs):
        raise WebPushException('server error', response=FakeHTTPResponse(500))

    monkeypatch.setattr('prepper.push.webpush', fake_webpush)
    with make_app().app_context():
        with pytest.raises(PushError):
            send_push(Sub(), build_payload('T', 'B'))


def test_send_push_without_keys_raises():
    with make_app(vapid=False).app_context():
        with pytest.raises(PushError):
            send_push(Sub(), build_payload('T', 'B'))


class FakeBody:
    def __init__(self, data):
        self.data = data

    def read(self):
        return self.data


class FakeS3:
    def __init__(self, bucket_exists=True):
        self.bucket_exists = bucket_exists
        self.objects = {}
        self.created = []
        self.policies = []

    def _error(self, code, op):
        return ClientError({'Error': {'Code': code, 'Message': code}}, op)

    def head_bucket(self, Bucket):
        if not self.bucket_exists:
            raise self._error('404', 'HeadBucket')

    def create_bucket(self, Bucket):
        self.created.append(Bucket)
        self.bucket_exists = True

    def put_bucket_policy(self, Bucket, Policy):
        self.policies.append(json.loads(Policy))

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = Body

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._error('NoSuchKey', 'GetObject')
        return {'Body': FakeBody(self.objects[Key])}

    def delete_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._error('NoSuchKey', 'DeleteObject')
        del self.objects[Key]


def test_storage_creates_missing_bucket_once():
    s3 = FakeS3(bucket_exists=False)
    storage = PhotoStorage(bucket='photos', client=s3)
    storage.put('1/2/a.jpg', b'data', 'image/jpeg')
    storage.put('1/2/b.jpg', b'more', 'image/jpeg')
    assert s3.created == ['photos']
    assert s3.policies[0]['Statement'][0]['Resource'] == ['arn:aws:s3:::photos/*']
    assert storage.get('1/2/a.jpg') == b'data'


def test_storage_skip_bucket_creation():
    s3 = FakeS3(bucket_exists=False)
    storage = PhotoStorage(client=s3, skip_bucket_creation=True)
    storage.put('k', b'x', 'image/png')
    assert s3.created == []


def test_storage_missing_objects():
    storage = PhotoStorage(client=FakeS3())
    # Deleting something already gone is not an error
    storage.delete('nope')
    with pytest.raises(StorageError):
        storage.get('nope')


def test_public_url():
    storage = PhotoStorage(client=FakeS3(), bucket='photos', public_url='https://cdn.example/')
    assert storage.url_for('1/2/a.jpg') == 'https://cdn.example/photos/1/2/a.jpg'
