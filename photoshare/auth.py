"""
Authentication: password hashing, session cookies, federated identity and the
``login_required`` guard used by every protected route.

A request is authenticated from one of two credentials:

* ``PasswordSession`` -- the signed JWT in the ``token`` cookie, issued by
  login, registration, reactivation and the federated exchange;
* ``FederatedSession`` -- a Firebase ID token in the ``firebase_token`` cookie
  (or an ``Authorization: Firebase <token>`` header), verified with the
  identity provider on each request.

Both feed the same ``authenticate`` check, so an inactive or vanished account
is rejected the same way whichever credential carried the request.
"""
import logging
import random
import re
from dataclasses import dataclass
from functools import wraps
from typing import Optional, Union

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError
from flask import current_app, g, request
from flask_bcrypt import Bcrypt
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    set_access_cookies,
    unset_jwt_cookies,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from photoshare.errors import AccountDeactivated, Conflict, Unauthenticated
from photoshare.models import User, db

logger = logging.getLogger(__name__)

bcrypt = Bcrypt()
jwt = JWTManager()

FIREBASE_APP_NAME = 'photoshare'
FEDERATED_HEADER_SCHEME = 'Firebase'
LINK_ATTEMPTS = 5


@dataclass(frozen=True)
class FederatedIdentity:
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None


@dataclass(frozen=True)
class PasswordSession:
    user_id: int


@dataclass(frozen=True)
class FederatedSession:
    identity: FederatedIdentity


Credential = Union[PasswordSession, FederatedSession]


@dataclass
class Principal:
    user: User
    credential: Credential


# Passwords

def hash_password(password):
    return bcrypt.generate_password_hash(password).decode('utf-8')


def check_password(user, password):
    """False for federated-only accounts, which have no password hash."""
    if not user.password_hash:
        return False
    return bcrypt.check_password_hash(user.password_hash, password)


# Session cookies

def _cookie_max_age():
    return int(current_app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds())


def issue_session(response, user, federated_token=None):
    """Attach the session cookie(s) for *user* to *response*."""
    access_token = create_access_token(identity=str(user.user_id))
    set_access_cookies(response, access_token)
    if federated_token:
        response.set_cookie(
            current_app.config['FEDERATED_COOKIE_NAME'],
            federated_token,
            max_age=_cookie_max_age(),
            httponly=True,
            secure=current_app.config['JWT_COOKIE_SECURE'],
            samesite=current_app.config['JWT_COOKIE_SAMESITE'],
        )
    return response


def clear_session(response):
    unset_jwt_cookies(response)
    response.delete_cookie(current_app.config['FEDERATED_COOKIE_NAME'])
    return response


# Federated identity

def _firebase_app():
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    cred_path = current_app.config.get('FIREBASE_CREDENTIALS')
    cred = credentials.Certificate(cred_path) if cred_path else credentials.ApplicationDefault()
    options = {}
    if current_app.config.get('FIREBASE_PROJECT_ID'):
        options['projectId'] = current_app.config['FIREBASE_PROJECT_ID']
    return firebase_admin.initialize_app(cred, options or None, name=FIREBASE_APP_NAME)


def verify_federated_token(id_token) -> FederatedIdentity:
    """Verify a Firebase ID token with the identity provider."""
    try:
        claims = firebase_auth.verify_id_token(id_token, app=_firebase_app())
    except (FirebaseError, ValueError) as exc:
        logger.warning('Federated token rejected: %s', exc)
        raise Unauthenticated('Failed to authenticate with Google') from exc

    email = claims.get('email')
    return FederatedIdentity(
        uid=claims['uid'],
        email=email.lower() if email else None,
        name=claims.get('name'),
        picture=claims.get('picture'),
    )


def _username_from_email(email):
    local = re.sub(r'[^A-Za-z0-9_.]', '', email.split('@')[0])[:26]
    if len(local) < 3:
        local = f'user{local}'
    return f'{local}{random.randint(0, 999)}'


def link_federated_user(identity: FederatedIdentity) -> User:
    """
    Find or create the local account for a verified federated identity.

    Lookup order is firebase uid, then an unlinked account with the same email
    (linked in place by a conditional UPDATE), then a new account. The unique
    constraints on ``firebase_uid`` and ``email`` decide concurrent first
    logins: the loser of an insert race re-reads the winner's row.
    """
    user = User.query.filter_by(firebase_uid=identity.uid).first()
    if user is not None:
        if not user.is_active:
            user.is_active = True
            db.session.commit()
            logger.info('Reactivated account %s via federated login', user.username)
        return user

    linked = db.session.execute(
        update(User)
        .where(User.email == identity.email, User.firebase_uid.is_(None))
        .values(firebase_uid=identity.uid, is_active=True)
    ).rowcount
    if linked:
        db.session.commit()
        logger.info('Linked federated identity %s to account %s', identity.uid, identity.email)
        return User.query.filter_by(firebase_uid=identity.uid).one()

    for _ in range(LINK_ATTEMPTS):
        username = _username_from_email(identity.email)
        user = User(
            username=username,
            email=identity.email,
            name=identity.name or username,
            profile_image=identity.picture,
            firebase_uid=identity.uid,
            is_active=True,
        )
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
        else:
            logger.info('Created account %s for federated identity %s', username, identity.uid)
            return user

        existing = User.query.filter_by(firebase_uid=identity.uid).first()
        if existing is not None:
            return existing
        if User.query.filter_by(email=identity.email).first() is not None:
            raise Conflict('Email is already linked to another account')

    raise Conflict('Could not allocate a username for this account')


# Request authentication

def _federated_token_from_request():
    token = request.cookies.get(current_app.config['FEDERATED_COOKIE_NAME'])
    if token:
        return token
    scheme, _, value = request.headers.get('Authorization', '').partition(' ')
    if scheme == FEDERATED_HEADER_SCHEME and value:
        return value.strip()
    return None


def resolve_credential() -> Optional[Credential]:
    """Work out which credential, if any, the current request carries."""
    try:
        verify_jwt_in_request(optional=True, locations=['cookies'])
        identity = get_jwt_identity()
    except (JWTExtendedException, PyJWTError) as exc:
        logger.debug('Ignoring unusable session token: %s', exc)
        identity = None

    if identity is not None:
        try:
            return PasswordSession(int(identity))
        except (TypeError, ValueError):
            logger.warning('Session token carries a malformed identity: %r', identity)

    token = _federated_token_from_request()
    if token:
        return FederatedSession(verify_federated_token(token))
    return None


def authenticate(credential: Optional[Credential]) -> Principal:
    if credential is None:
        raise Unauthenticated('Not authenticated')

    if isinstance(credential, PasswordSession):
        user = db.session.get(User, credential.user_id)
    else:
        user = User.query.filter_by(firebase_uid=credential.identity.uid).first()

    if user is None:
        raise Unauthenticated('User not found')
    if not user.is_active:
        raise AccountDeactivated('Account is deactivated. Please log in again to reactivate.')
    return Principal(user=user, credential=credential)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        g.principal = authenticate(resolve_credential())
        return fn(*args, **kwargs)
    return wrapper


def current_user() -> User:
    return g.principal.user


def session_provider() -> str:
    """Which credential authenticated the current request."""
    if isinstance(g.principal.credential, FederatedSession):
        return 'google'
    return 'password'
