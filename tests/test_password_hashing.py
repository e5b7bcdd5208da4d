import pytest

from votechain.encryption.password_hashing import PasswordHashingService
from votechain.errors import ValidationError


@pytest.fixture
def password_service():
    return PasswordHashingService()


def test_hash_and_verify_password(password_service):
    password = "StrongPass123!"
    hashed = password_service.hash_password(password)

    assert hashed != password
    assert hashed.startswith("$argon2id$")

    # Verify the original password works
    assert password_service.verify_password(password, hashed) is True

    # Wrong password should fail
    assert password_service.verify_password("WrongPass456!", hashed) is False

    # Check if hash needs rehash (should be False immediately)
    assert password_service.needs_rehash(hashed) is False


def test_hashes_are_salted(password_service):
    assert password_service.hash_password("Secret123!") != password_service.hash_password("Secret123!")


def test_verify_with_garbage_hash(password_service):
    assert password_service.verify_password("Secret123!", "not-a-hash") is False
    assert password_service.verify_password("Secret123!", None) is False
    assert password_service.verify_password(None, password_service.hash_password("Secret123!")) is False


def test_weak_password_is_not_hashed(password_service):
    with pytest.raises(ValidationError):
        password_service.hash_password("short")
    with pytest.raises(ValidationError):
        password_service.hash_password("onlylowercaseletters")


def test_is_strong_password(password_service):
    # Strong password
    assert password_service.is_strong_password("MyStrongPass123!") is True

    # Too short
    assert password_service.is_strong_password("Sh0rt!") is False

    # Missing uppercase but still meets 3/4 → should be True
    assert password_service.is_strong_password("lowercase123!") is True

    # Missing number, uppercase and special → False
    assert password_service.is_strong_password("onlylowercaseletters") is False

    # Missing special, has uppercase, lowercase, digit → True
    assert password_service.is_strong_password("NoSpecial123") is True

    assert password_service.is_strong_password(None) is False


def test_min_length_is_configurable():
    service = PasswordHashingService(min_length=12)
    assert service.is_strong_password("Secret123!") is False
    assert service.is_strong_password("Secret123!abc") is True
