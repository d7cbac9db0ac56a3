"""
Admin authentication: signed bearer tokens checked through Flask-Login's request loader
"""

from datetime import datetime, timedelta, timezone

from flask import current_app, jsonify
from flask_login import UserMixin
from itsdangerous import BadSignature, URLSafeSerializer
from werkzeug.security import check_password_hash

TOKEN_SALT = 'membercard-admin'
ADMIN_SUBJECT = 'admin'


class AdminUser(UserMixin):
    """The single console operator; identified by the token subject"""

    def __init__(self, subject, expires_at):
        self.id = subject
        self.expires_at = expires_at

    def __repr__(self):
        return f'<AdminUser {self.id}>'


def _serializer():
    return URLSafeSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def check_admin_password(password):
    if not password:
        return False
    return check_password_hash(current_app.config['ADMIN_PASSWORD_HASH'], password)


def create_access_token(subject=ADMIN_SUBJECT, expires_delta=None):
    """Sign a token carrying the subject and its expiration (unix seconds)"""
    if expires_delta is None:
        expires_delta = timedelta(days=current_app.config['AUTH_TOKEN_TTL_DAYS'])
    expire = datetime.now(timezone.utc) + expires_delta
    return _serializer().dumps({'sub': subject, 'exp': int(expire.timestamp())})


def verify_access_token(token):
    """Return the token payload, or None if it is malformed, tampered with or expired"""
    if not token:
        return None
    try:
        payload = _serializer().loads(token)
    except BadSignature:
        return None

    if not isinstance(payload, dict) or not payload.get('sub'):
        return None

    exp = payload.get('exp')
    if not isinstance(exp, (int, float)) or datetime.now(timezone.utc).timestamp() > exp:
        return None

    return payload


def load_user_from_request(request):
    """Flask-Login request loader for `Authorization: Bearer <token>`"""
    auth_header = request.headers.get('Authorization', '')
    scheme, _, token = auth_header.partition(' ')
    if scheme.lower() != 'bearer':
        return None

    payload = verify_access_token(token.strip())
    if payload is None:
        return None

    return AdminUser(payload['sub'], datetime.fromtimestamp(payload['exp'], tz=timezone.utc))


def unauthorized():
    return jsonify({'error': 'Unauthorized'}), 401
