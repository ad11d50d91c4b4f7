"""
auth/tokens.py -- Password hashing and the session token lifecycle.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper) with a fixed cost factor.
       bcrypt.checkpw compares in constant time. _dummy_hash on the store
       enables timing equalization for unknown emails.

  Sessions: python-jose HS256 JWTs carrying id, name, email and roles.
       A valid signature is necessary but NOT sufficient: the token's
       signature segment must also be present in the auth ledger (the `auth`
       table). Logging out deletes the ledger row, which kills the token for
       good even though its signature still verifies.

  Ledger key: only the third dot-separated segment is stored. Keying on the
       signature bounds the row size and keeps the ledger scheme independent
       of what the payload carries.

Layer rule: no imports from api/ or pizza/.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Identity, SessionToken, User
from core.errors import InvalidSignature, Revoked, ValidationFailed

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("pizza.auth")

_ALGORITHM = "HS256"

# bcrypt accepts at most 72 bytes of password, counted after UTF-8 encoding.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 10) -> str:
    """Return a salted bcrypt hash of the plaintext password.

    Raises:
        ValidationFailed: the UTF-8 encoding is longer than MAX_PASSWORD_BYTES.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationFailed(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database -- treat as a mismatch.
        return False


# ---------------------------------------------------------------------------
# Session authority
# ---------------------------------------------------------------------------


def _claims_for(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "roles": [
            {"role": r.role.value, **({"objectId": r.object_id} if r.object_id is not None else {})}
            for r in user.roles
        ],
        "iat": int(time.time()),
    }


class SessionAuthority:
    """Issues, verifies and revokes session tokens.

    Usage:
        sessions = SessionAuthority(user_store, secret_key)
        token = sessions.issue(user)
        if sessions.is_active(token):
            identity = sessions.verify(token)
        sessions.revoke(token)
    """

    def __init__(self, store: UserStore, secret_key: str, expire_seconds: int = 0) -> None:
        self._store = store
        self._secret_key = secret_key
        self._expire_seconds = expire_seconds

    def issue(self, user: User) -> str:
        """Sign a token for user and record its signature in the ledger.

        Re-issuing an identical token (same user, same second) is a no-op on
        the ledger.
        """
        claims = _claims_for(user)
        if self._expire_seconds > 0:
            claims["exp"] = claims["iat"] + self._expire_seconds
        raw = jwt.encode(claims, self._secret_key, algorithm=_ALGORITHM)
        token = SessionToken.parse(raw)
        self._store.add_token(token.signature, user.id)
        return raw

    def verify(self, raw: str) -> Identity:
        """Return the caller's Identity.

        Raises:
            InvalidSignature: the token is malformed, does not verify, or has expired.
            Revoked:          the token verifies but its ledger row is gone.
        """
        token = SessionToken.parse(raw)
        if token is None:
            raise InvalidSignature("unauthorized")
        try:
            claims = jwt.decode(raw, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidSignature("unauthorized") from exc
        if "id" not in claims:
            raise InvalidSignature("unauthorized")
        if not self._store.has_token(token.signature):
            raise Revoked("unauthorized")
        return Identity.from_claims(claims)

    def revoke(self, raw: str) -> None:
        """Delete the ledger row for this token. Unknown or malformed tokens are ignored."""
        token = SessionToken.parse(raw)
        if token is not None:
            self._store.delete_token(token.signature)

    def is_active(self, raw: str) -> bool:
        """Ledger existence check only. Cheap enough to run before verify()."""
        token = SessionToken.parse(raw)
        if token is None:
            return False
        return self._store.has_token(token.signature)
