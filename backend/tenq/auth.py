"""Player identity.

The identity service signs the player id with the shared ``SECRET_KEY``;
this module only verifies the signature. The resulting player id is opaque
and is compared for equality, nothing more.
"""
from flask import current_app
from flask_login import UserMixin
from itsdangerous import BadSignature, URLSafeTimedSerializer

from tenq.errors import ErrorCodes, NotAuthorized

TOKEN_SALT = 'tenq-player'


class PlayerIdentity(UserMixin):
    def __init__(self, player_id):
        self.id = player_id

    @property
    def player_id(self):
        return self.id


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_player_token(player_id):
    return _serializer().dumps(str(player_id))


def load_identity_from_request(request):
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    token = header[len('Bearer '):].strip()
    max_age = int(current_app.config.get('PLAYER_TOKEN_MAX_AGE_SEC', 86400))
    try:
        player_id = _serializer().loads(token, max_age=max_age)
    except BadSignature:
        current_app.logger.warning('[auth-reject] invalid or expired player token')
        return None
    if not player_id:
        return None
    return PlayerIdentity(player_id)


def unauthorized():
    raise NotAuthorized(ErrorCodes.NOT_AUTHORIZED, 'Missing or invalid Authorization header')
