# votechain/encryption/password_hashing.py

import re
from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from votechain.errors import ValidationError

# Salted, cost-tuned password hashing with Argon2id. Plaintext is never stored or compared.

MIN_PASSWORD_LENGTH = 8


class PasswordHashingService:
    def __init__(self, min_length=MIN_PASSWORD_LENGTH):
        self.min_length = min_length
        self.ph = PasswordHasher(
            time_cost=3,
            memory_cost=65536,
            parallelism=4,
            hash_len=32,
            salt_len=16,
        )

    def hash_password(self, password: str) -> str:
        if not self.is_strong_password(password):
            raise ValidationError(
                f"Password must be at least {self.min_length} characters long and mix "
                "at least three of: upper case, lower case, digits, symbols")
        try:
            return self.ph.hash(password)
        except HashingError as e:
            raise ValueError(f"Password hashing failed: {str(e)}")

    def verify_password(self, password: str, hash_value: str) -> bool:
        if not isinstance(password, str) or not hash_value:
            return False
        try:
            return self.ph.verify(hash_value, password)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hash_value: str) -> bool:
        return self.ph.check_needs_rehash(hash_value)

    def rehash(self, password: str) -> str:
        # Upgrade to the current parameters after a successful verify. The
        # strength policy applies to new passwords only.
        return self.ph.hash(password)

    def is_strong_password(self, password: str) -> bool:
        if not isinstance(password, str) or len(password) < self.min_length:
            return False
        has_upper = bool(re.search(r'[A-Z]', password))
        has_lower = bool(re.search(r'[a-z]', password))
        has_digit = bool(re.search(r'\d', password))
        has_special = bool(re.search(r'[^A-Za-z0-9]', password))
        return sum([has_upper, has_lower, has_digit, has_special]) >= 3
