from dataclasses import dataclass

from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from .errors import TokenExpired, TokenInvalid, UserNotFound
from .models import Role, User

TOKEN_SALT = 'filegate.session'


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    role: Role

    @classmethod
    def from_user(cls, user):
        return cls(id=user.id, email=user.email, role=user.role)

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    def to_dict(self):
        return {'id': self.id, 'email': self.email, 'role': self.role.value}


class TokenService:
    """Stateless session tokens signed with the server secret.

    The payload is readable by anyone holding the token; only the signature
    and embedded timestamp are trusted.
    """

    def __init__(self, secret_key: str, expires_in: int = 60 * 60 * 24):
        self.serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)
        self.expires_in = expires_in

    def issue(self, identity) -> str:
        return self.serializer.dumps({
            'userId': identity.id,
            'email': identity.email,
            'role': identity.role.value,
        })

    def decode(self, token: str) -> dict:
        try:
            payload = self.serializer.loads(token, max_age=self.expires_in)
        except SignatureExpired:
            raise TokenExpired()
        except BadSignature:
            raise TokenInvalid()
        if not isinstance(payload, dict) or not payload.get('userId'):
            raise TokenInvalid()
        return payload

    def verify(self, token: str, sess) -> Identity:
        """Decode the token and re-resolve it against the current user table.

        Deleting a user revokes their outstanding tokens on the next call.
        """
        payload = self.decode(token)
        user = sess.get(User, payload['userId'])
        if user is None:
            raise UserNotFound()
        return Identity.from_user(user)

    def verify_optional(self, token, sess):
        if not token:
            return None
        try:
            return self.verify(token, sess)
        except (TokenExpired, TokenInvalid, UserNotFound):
            return None
