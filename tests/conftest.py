"""
Shared fixtures: an app on in-memory SQLite, one test client per user, and
fakes standing in for Cloudinary and Firebase.
"""
import io
from types import SimpleNamespace

import pytest

from photoshare import auth, create_app, media
from photoshare.auth import FederatedIdentity
from photoshare.errors import Unauthenticated
from photoshare.models import db

PASSWORD = 'secret123'


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def fake_media(monkeypatch):
    """Record uploads and deletions instead of talking to Cloudinary."""
    store = SimpleNamespace(uploaded=[], deleted=[])

    def upload_image(upload):
        url = f'https://res.cloudinary.com/demo/image/upload/v1/photoshare/img{len(store.uploaded)}.jpg'
        store.uploaded.append(url)
        return url

    def delete_image(url):
        store.deleted.append(url)
        return True

    monkeypatch.setattr(media, 'upload_image', upload_image)
    monkeypatch.setattr(media, 'delete_image', delete_image)
    return store


@pytest.fixture(autouse=True)
def federated_tokens(monkeypatch):
    """Map of ID token -> FederatedIdentity accepted by the fake provider."""
    tokens = {}

    def verify_federated_token(id_token):
        try:
            return tokens[id_token]
        except KeyError:
            raise Unauthenticated('Failed to authenticate with Google')

    monkeypatch.setattr(auth, 'verify_federated_token', verify_federated_token)
    tokens['google-token'] = FederatedIdentity(
        uid='firebase-uid-1', email='grace@example.com', name='Grace Hopper',
        picture='https://lh3.googleusercontent.com/a/grace.jpg'
    )
    return tokens


def register(client, username, email=None, password=PASSWORD, name=None):
    return client.post('/api/auth/register', json={
        'username': username,
        'email': email or f'{username}@example.com',
        'password': password,
        'name': name or username.title(),
    })


def create_post(client, caption=None):
    data = {'image': (io.BytesIO(b'\xff\xd8\xff fake jpeg'), 'photo.jpg', 'image/jpeg')}
    if caption is not None:
        data['caption'] = caption
    return client.post('/api/posts', data=data, content_type='multipart/form-data')


@pytest.fixture
def make_user(app):
    """Register a user and return a test client holding their session cookie."""
    def _make(username, **kwargs):
        user_client = app.test_client()
        resp = register(user_client, username, **kwargs)
        assert resp.status_code == 201, resp.get_json()
        user_client.user = resp.get_json()
        return user_client
    return _make
