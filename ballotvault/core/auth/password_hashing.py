"""
Password Hashing
================

Salted, iterated SHA-256 password digests with backward-compatible
verification of digests issued by the older single-pass scheme.

Schemes:
- iterated-sha256 (current): base64-decoded salt bytes followed by the UTF-8
  password, run through SHA-256 ``iterations`` times, base64-encoded.
- legacy-sha256: one SHA-256 pass over the salt text followed by the
  password. Only ever used for verification.

Verification walks an ordered list of strategies and stops at the first
match:
    1. current scheme with the stored salt
    2. legacy scheme with the stored salt
    3. legacy scheme with no salt
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Final, Optional, Tuple

from cryptography.hazmat.primitives import hashes

from ballotvault.security.constants import HASH_ITERATIONS, SALT_LENGTH_BYTES


CURRENT_SCHEME: Final[str] = "iterated-sha256"
LEGACY_SALTED_SCHEME: Final[str] = "legacy-sha256"
LEGACY_UNSALTED_SCHEME: Final[str] = "legacy-sha256-unsalted"

_log = logging.getLogger("ballotvault.hashing")


def _sha256(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def _encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _utf8(text: object) -> Optional[bytes]:
    """UTF-8 bytes of ``text``, or None for non-strings and unencodable text."""
    if not isinstance(text, str):
        return None
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError:
        return None


def iterated_digest(password: str, salt: str, iterations: int) -> Optional[str]:
    """
    Current scheme.

    An empty salt hashes the password bytes alone. Returns None for an
    empty or unencodable password and for a salt that is not valid base64.
    """
    data = _utf8(password) if password else None
    if data is None:
        return None

    if salt:
        if not isinstance(salt, str):
            return None
        try:
            data = base64.b64decode(salt, validate=True) + data
        except (binascii.Error, ValueError):
            return None

    for _ in range(iterations):
        data = _sha256(data)

    return _encode(data)


def legacy_digest(password: str, salt: str = "") -> Optional[str]:
    """Legacy single-pass scheme over the salt's text bytes then the password."""
    password_bytes = _utf8(password) if password else None
    salt_bytes = _utf8(salt or "")
    if password_bytes is None or salt_bytes is None:
        return None
    return _encode(_sha256(salt_bytes + password_bytes))


def _matches(candidate: Optional[str], stored: str) -> bool:
    if candidate is None or not isinstance(stored, str):
        return False
    return hmac.compare_digest(candidate.encode("ascii"), stored.encode("ascii", "replace"))


@dataclass(frozen=True, slots=True)
class VerificationStrategy:
    """
    One way of checking a password against a stored digest.

    ``verify`` is a pure function ``(password, stored_digest, salt) -> bool``.
    """
    name: str
    verify: Callable[[str, str, str], bool]


def default_strategies(iterations: int = HASH_ITERATIONS) -> Tuple[VerificationStrategy, ...]:
    """The ordered strategy list: current scheme first, then the legacy fallbacks."""
    return (
        VerificationStrategy(
            CURRENT_SCHEME,
            lambda password, stored, salt: _matches(iterated_digest(password, salt, iterations), stored),
        ),
        VerificationStrategy(
            LEGACY_SALTED_SCHEME,
            lambda password, stored, salt: bool(salt) and _matches(legacy_digest(password, salt), stored),
        ),
        VerificationStrategy(
            LEGACY_UNSALTED_SCHEME,
            lambda password, stored, salt: _matches(legacy_digest(password), stored),
        ),
    )


class PasswordHasher:
    """
    Salted password hasher with ordered fallback verification.

    Usage:
        hasher = PasswordHasher()

        salt = hasher.generate_salt()
        digest = hasher.hash("Abc12345", salt)      # None if not hashable
        store(digest, salt)

        hasher.verify("Abc12345", digest, salt)     # True

    Notes:
        - Neither ``hash`` nor ``verify`` raises; an empty password is
          reported as None (not hashed) or False (no match).
        - A match through a legacy strategy still authenticates. The next
          password change writes a current-scheme digest with a new salt.
    """

    __slots__ = ("_iterations", "_salt_length", "_strategies")

    def __init__(
        self,
        iterations: int = HASH_ITERATIONS,
        salt_length: int = SALT_LENGTH_BYTES,
        strategies: Optional[Tuple[VerificationStrategy, ...]] = None,
    ) -> None:
        """
        Args:
            iterations: SHA-256 rounds for the current scheme (default: 10,000)
            salt_length: Random salt size in bytes (default: 32)
            strategies: Ordered verification strategies (default: current,
                legacy salted, legacy unsalted)
        """
        if iterations < 1:
            raise ValueError("iterations must be at least 1")
        if salt_length < 16:
            raise ValueError("salt_length must be at least 16 bytes")

        self._iterations = iterations
        self._salt_length = salt_length
        self._strategies = strategies if strategies is not None else default_strategies(iterations)

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def strategies(self) -> Tuple[VerificationStrategy, ...]:
        return self._strategies

    def generate_salt(self) -> str:
        """Fresh random salt, base64-encoded. Never reuse one across accounts or changes."""
        return _encode(secrets.token_bytes(self._salt_length))

    def hash(self, password: Optional[str], salt: str) -> Optional[str]:
        """
        Digest a password with the current scheme.

        Returns:
            The base64 digest, or None when the password is empty (callers
            treat that as invalid input, not as a mismatch)
        """
        if not password:
            return None
        return iterated_digest(password, salt or "", self._iterations)

    def match(self, password: Optional[str], digest: Optional[str], salt: Optional[str]) -> Optional[str]:
        """
        Name of the first strategy that accepts the password, or None.
        """
        if not password or not digest:
            return None

        for strategy in self._strategies:
            if strategy.verify(password, digest, salt or ""):
                if strategy.name != CURRENT_SCHEME:
                    _log.info("Password matched via %s scheme; rehash on next change", strategy.name)
                return strategy.name
        return None

    def verify(self, password: Optional[str], digest: Optional[str], salt: Optional[str]) -> bool:
        """Check a password against a stored digest and salt."""
        return self.match(password, digest, salt) is not None

    @staticmethod
    def needs_rehash(scheme: Optional[str]) -> bool:
        """Whether a digest verified by ``scheme`` should be replaced."""
        return scheme is not None and scheme != CURRENT_SCHEME

    def __repr__(self) -> str:
        names = ", ".join(s.name for s in self._strategies)
        return f"PasswordHasher(iterations={self._iterations}, strategies=[{names}])"
