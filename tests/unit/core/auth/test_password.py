"""Tests for password hashing and policy."""

import pytest

from loyalty.core.auth.password import hash_password, password_policy_errors, verify_password


class TestPasswordHashing:
    """Test bcrypt hashing."""

    def test_hash_and_verify(self) -> None:
        """Should verify the original password."""
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)

    def test_wrong_password_fails(self) -> None:
        """Should reject a different password."""
        hashed = hash_password("s3cret-pass")
        assert not verify_password("other-pass1", hashed)

    def test_hashes_are_salted(self) -> None:
        """Hashing twice should give different hashes."""
        assert hash_password("s3cret-pass") != hash_password("s3cret-pass")

    def test_missing_hash_never_verifies(self) -> None:
        """Social-only accounts have no password to match."""
        assert not verify_password("anything1", None)

    def test_garbage_hash_never_verifies(self) -> None:
        """A stored value that is not a bcrypt hash should not raise."""
        assert not verify_password("anything1", "not-a-bcrypt-hash")

    def test_over_long_password_rejected(self) -> None:
        """bcrypt would silently truncate, so hashing refuses."""
        with pytest.raises(ValueError):
            hash_password("a1" * 40)


class TestPasswordPolicy:
    """Test password policy checks."""

    def test_acceptable_password(self) -> None:
        """Letters, digits and enough length pass."""
        assert password_policy_errors("abcdefg1") == []

    @pytest.mark.parametrize(
        ("password", "fragment"),
        [
            ("abc1", "at least"),
            ("abcdefgh", "digit"),
            ("12345678", "letter"),
            ("a1" * 40, "at most"),
        ],
    )
    def test_policy_violations(self, password: str, fragment: str) -> None:
        """Each broken rule should be reported."""
        errors = password_policy_errors(password)
        assert any(fragment in error for error in errors)
