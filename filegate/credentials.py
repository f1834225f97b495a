import secrets

from argon2 import PasswordHasher
from argon2.exceptions import VerificationError, InvalidHashError

UPPERCASE = 'ABCDEFGHJKLMNPQRSTUVWXYZ'
LOWERCASE = 'abcdefghjkmnpqrstuvwxyz'
DIGITS = '23456789'
SYMBOLS = '!@#$%'
AMBIGUOUS = set('0O1lI')
CHARSET = UPPERCASE + LOWERCASE + DIGITS + SYMBOLS


class CredentialService:
    """Password hashing (argon2id) and temporary password generation."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4):
        self.hasher = PasswordHasher(time_cost=time_cost, memory_cost=memory_cost,
                                     parallelism=parallelism)

    def hash(self, password: str) -> str:
        return self.hasher.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return self.hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            # covers VerifyMismatchError and malformed hashes alike
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self.hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True

    def generate_temporary_password(self, length: int = 16) -> str:
        if length < 4:
            raise ValueError('temporary passwords need at least 4 characters')
        chars = [
            secrets.choice(UPPERCASE),
            secrets.choice(LOWERCASE),
            secrets.choice(DIGITS),
            secrets.choice(SYMBOLS),
        ]
        chars.extend(secrets.choice(CHARSET) for _ in range(length - len(chars)))
        secrets.SystemRandom().shuffle(chars)
        return ''.join(chars)
