"""Password hashing, one-way token hashing, JWT creation/verification and at-rest encryption."""

import base64
import hashlib
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
from cryptography.fernet import Fernet, InvalidToken as FernetInvalidToken

from studio.core.clock import Clock, utc_now
from studio.core.config import Settings
from studio.core.exceptions import ExpiredToken, InvalidToken
from studio.core.permissions import Role

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 100
EMAIL_MAX_LEN = 255

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

# Fallback lifetime for expiry strings that do not parse. Settings validation
# rejects such strings, so configured values never reach this.
DEFAULT_EXPIRY_SECONDS = 900

_EXPIRY_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_PASSWORD_CLASSES_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")

PASSWORD_CLASSES_MESSAGE = (
    "Password must contain at least one uppercase letter, one lowercase letter, and one number"
)


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash."""
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def password_problems(password: str) -> list[str]:
    """Human-readable reasons ``password`` is not acceptable; empty when it is."""
    problems = []
    if len(password) < PASSWORD_MIN_LEN:
        problems.append(f"Password must be at least {PASSWORD_MIN_LEN} characters")
    if len(password) > PASSWORD_MAX_LEN:
        problems.append(f"Password must be at most {PASSWORD_MAX_LEN} characters")
    if not _PASSWORD_CLASSES_RE.match(password):
        problems.append(PASSWORD_CLASSES_MESSAGE)
    return problems


def hash_token(raw_token: str) -> str:
    """One-way SHA-256 hex digest; the only form in which tokens are persisted."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_random_token(num_bytes: int = 32) -> str:
    """Cryptographically random token, hex encoded."""
    return secrets.token_hex(num_bytes)


def parse_expiration(value: str) -> int:
    """
    Convert an expiry string such as "15m" or "7d" to seconds.

    Unparsable input falls back to DEFAULT_EXPIRY_SECONDS (15 minutes).
    """
    match = _EXPIRY_RE.match(value.strip()) if value else None
    if not match:
        return DEFAULT_EXPIRY_SECONDS
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


@dataclass(frozen=True)
class TokenPayload:
    """Identity signed into access and refresh tokens."""

    user_id: str
    email: str
    role: Role
    token_type: str = ACCESS_TOKEN
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime


class TokenCodec:
    """
    Creates and verifies signed, time-bounded access and refresh tokens.

    Expiry is checked against the injected clock rather than the system time,
    so tests can move time without sleeping.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        access_ttl_seconds: int = DEFAULT_EXPIRY_SECONDS,
        refresh_ttl_seconds: int = 7 * 86400,
        leeway_seconds: int = 0,
        clock: Clock = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret cannot be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._leeway = leeway_seconds
        self._clock = clock
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenCodec":
        return cls(
            settings.JWT_SECRET.get_secret_value(),
            algorithm=settings.JWT_ALGORITHM,
            access_ttl_seconds=parse_expiration(settings.JWT_ACCESS_EXPIRES_IN),
            refresh_ttl_seconds=parse_expiration(settings.JWT_REFRESH_EXPIRES_IN),
            leeway_seconds=settings.JWT_LEEWAY_SECONDS,
            clock=clock,
        )

    def issue(self, payload: TokenPayload, ttl_seconds: int, token_type: str = ACCESS_TOKEN) -> str:
        """Sign ``payload`` with an expiry ``ttl_seconds`` from now."""
        issued_at = int(self._clock().timestamp())
        claims: dict[str, Any] = {
            "sub": payload.user_id,
            "email": payload.email,
            "role": Role(payload.role).value,
            "type": token_type,
            # Two tokens minted in the same second must still hash differently.
            "jti": uuid.uuid4().hex,
            "iat": issued_at,
            "exp": issued_at + ttl_seconds,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def issue_pair(self, payload: TokenPayload) -> AuthTokens:
        """Mint an access token and a refresh token for the same identity."""
        access = self.issue(payload, self.access_ttl_seconds, ACCESS_TOKEN)
        refresh = self.issue(payload, self.refresh_ttl_seconds, REFRESH_TOKEN)
        return AuthTokens(
            access_token=access,
            refresh_token=refresh,
            expires_in=self.access_ttl_seconds,
            refresh_expires_at=self._clock() + timedelta(seconds=self.refresh_ttl_seconds),
        )

    def verify(self, token: str, expected_type: str | None = None) -> TokenPayload:
        """
        Verify signature and expiry; return the payload.

        Raises InvalidToken or ExpiredToken. Callers at the HTTP boundary report
        both with the same generic message.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "exp", "type"],
                },
            )
        except jwt.PyJWTError as e:
            raise InvalidToken() from e

        payload = self._to_payload(claims)
        if payload is None:
            raise InvalidToken()
        if expected_type is not None and payload.token_type != expected_type:
            raise InvalidToken()
        if int(claims["exp"]) <= self._clock().timestamp() - self._leeway:
            raise ExpiredToken()
        return payload

    def decode(self, token: str) -> TokenPayload | None:
        """Best-effort decode without verifying signature or expiry. Display only."""
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return None
        return self._to_payload(claims)

    @staticmethod
    def _to_payload(claims: dict[str, Any]) -> TokenPayload | None:
        try:
            return TokenPayload(
                user_id=str(claims["sub"]),
                email=str(claims.get("email", "")),
                role=Role(claims.get("role")),
                token_type=str(claims.get("type", ACCESS_TOKEN)),
                expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=UTC),
            )
        except (KeyError, TypeError, ValueError):
            return None


class SecretBox:
    """Fernet encryption for secrets stored at rest (provider API keys)."""

    def __init__(self, key_material: str) -> None:
        if not key_material:
            raise ValueError("Encryption key cannot be empty")
        # Fernet wants 32 url-safe base64 bytes; derive them from arbitrary key material.
        digest = hashlib.sha256(key_material.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except FernetInvalidToken as e:
            raise ValueError("Decryption failed: wrong key or tampered data") from e


def key_preview(secret: str) -> str:
    """Short, non-reversible preview of an API key for listings."""
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"
