"""Tests for password hashing and legacy verification.

Tests for:
- Iterated SHA-256 digests with base64 salts
- Legacy single-pass digests (salted and unsalted)
- Ordered fallback verification
- Inputs that must never raise
"""

import base64
import hashlib

import pytest

from ballotvault.core.auth.password_hashing import (
    CURRENT_SCHEME,
    LEGACY_SALTED_SCHEME,
    LEGACY_UNSALTED_SCHEME,
    PasswordHasher,
    VerificationStrategy,
    iterated_digest,
    legacy_digest,
)


def reference_iterated(password, salt, iterations):
    data = base64.b64decode(salt) + password.encode("utf-8")
    for _ in range(iterations):
        data = hashlib.sha256(data).digest()
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def hasher():
    return PasswordHasher(iterations=25)


class TestCurrentScheme:
    """Tests for the iterated scheme."""

    def test_matches_reference_construction(self):
        """Test salt bytes then password bytes, hashed iteratively."""
        salt = base64.b64encode(b"\x01" * 32).decode()
        assert iterated_digest("Abc12345", salt, 7) == reference_iterated("Abc12345", salt, 7)

    def test_empty_salt_hashes_password_alone(self):
        """Test an empty salt falls back to hashing the password bytes."""
        expected = hashlib.sha256(hashlib.sha256(b"Abc12345").digest()).digest()
        assert iterated_digest("Abc12345", "", 2) == base64.b64encode(expected).decode()

    def test_hash_is_deterministic_per_salt(self, hasher):
        """Test the same password and salt always give the same digest."""
        salt = hasher.generate_salt()
        assert hasher.hash("Abc12345", salt) == hasher.hash("Abc12345", salt)

    def test_different_salts_give_different_digests(self, hasher):
        """Test salting separates equal passwords."""
        assert hasher.hash("Abc12345", hasher.generate_salt()) != hasher.hash("Abc12345", hasher.generate_salt())

    def test_digest_is_32_bytes(self, hasher):
        """Test the digest is a base64 SHA-256 value."""
        digest = hasher.hash("Abc12345", hasher.generate_salt())
        assert len(base64.b64decode(digest)) == 32

    def test_salt_is_32_random_bytes(self, hasher):
        """Test generated salts carry 256 bits."""
        salts = {hasher.generate_salt() for _ in range(20)}
        assert len(salts) == 20
        assert all(len(base64.b64decode(s)) == 32 for s in salts)

    @pytest.mark.parametrize("password", ["", None])
    def test_empty_password_is_not_hashed(self, hasher, password):
        """Test an empty password reports 'not hashed' instead of raising."""
        assert hasher.hash(password, hasher.generate_salt()) is None

    def test_invalid_salt_is_not_hashed(self, hasher):
        """Test a salt that is not base64 reports 'not hashed'."""
        assert hasher.hash("Abc12345", "not base64!!") is None


class TestVerification:
    """Tests for ordered strategy verification."""

    def test_verify_current_digest(self, hasher):
        salt = hasher.generate_salt()
        digest = hasher.hash("Abc12345", salt)

        assert hasher.verify("Abc12345", digest, salt)
        assert hasher.match("Abc12345", digest, salt) == CURRENT_SCHEME

    def test_wrong_password_rejected(self, hasher):
        salt = hasher.generate_salt()
        digest = hasher.hash("Abc12345", salt)

        assert not hasher.verify("Abc12346", digest, salt)
        assert hasher.match("Abc12346", digest, salt) is None

    def test_legacy_salted_digest_verifies(self, hasher):
        """Test the legacy scheme hashes the salt text, not decoded salt bytes."""
        salt = hasher.generate_salt()
        digest = base64.b64encode(
            hashlib.sha256(salt.encode() + b"OldPass1").digest()
        ).decode()

        assert legacy_digest("OldPass1", salt) == digest
        assert hasher.match("OldPass1", digest, salt) == LEGACY_SALTED_SCHEME
        assert hasher.needs_rehash(LEGACY_SALTED_SCHEME)

    def test_legacy_unsalted_digest_verifies(self, hasher):
        """Test a single unsalted SHA-256 pass is accepted as the last fallback."""
        digest = base64.b64encode(hashlib.sha256(b"OldPass1").digest()).decode()

        assert hasher.match("OldPass1", digest, hasher.generate_salt()) == LEGACY_UNSALTED_SCHEME
        assert hasher.match("OldPass1", digest, None) == LEGACY_UNSALTED_SCHEME

    def test_current_scheme_does_not_need_rehash(self):
        assert not PasswordHasher.needs_rehash(CURRENT_SCHEME)
        assert not PasswordHasher.needs_rehash(None)

    @pytest.mark.parametrize("password,digest,salt", [
        (None, "abc", "abc"),
        ("", "abc", "abc"),
        ("Abc12345", None, "abc"),
        ("Abc12345", "", ""),
        ("Abc12345", "%%%garbage%%%", "!!"),
        ("Abc12345", "ünïcödé", None),
        ("Ab1\ud800xyzq", "abc", ""),
        (12345678, "abc", ""),
        ("Abc12345", 42, "abc"),
        ("Abc12345", "abc", 42),
    ])
    def test_malformed_inputs_never_raise(self, hasher, password, digest, salt):
        assert hasher.verify(password, digest, salt) is False

    @pytest.mark.parametrize("password", ["Ab1\ud800xyzq", 12345678, ["Abc12345"]])
    def test_unhashable_passwords_hash_to_none(self, hasher, password):
        assert hasher.hash(password, hasher.generate_salt()) is None
        assert legacy_digest(password) is None

    def test_strategies_are_ordered(self, hasher):
        names = [s.name for s in hasher.strategies]
        assert names == [CURRENT_SCHEME, LEGACY_SALTED_SCHEME, LEGACY_UNSALTED_SCHEME]

    def test_custom_strategy_list(self):
        """Test new schemes plug in without touching callers."""
        always = VerificationStrategy("always", lambda password, stored, salt: password == "magic")
        hasher = PasswordHasher(iterations=1, strategies=(always,))

        assert hasher.match("magic", "whatever", "") == "always"
        assert not hasher.verify("other", "whatever", "")


class TestConstruction:

    def test_rejects_zero_iterations(self):
        with pytest.raises(ValueError):
            PasswordHasher(iterations=0)

    def test_rejects_short_salt(self):
        with pytest.raises(ValueError):
            PasswordHasher(salt_length=8)

    def test_repr_names_strategies(self, hasher):
        assert "iterated-sha256" in repr(hasher)
