# engine/tokens/authority.py

"""
Stateless postback nonces.

A nonce is a slice of a keyed hash over (window, action scope, type identity).
Nothing is stored: verification recomputes the token for the current window
and the one before it.

Replay of a valid nonce inside its two-window acceptance period is accepted.
"""

import hashlib
import hmac
import math
import time
from enum import IntEnum
from typing import Callable, Optional

ANONYMOUS_PREFIX = "nopriv_"
POSTBACK_ACTION_PREFIX = "async/"

TOKEN_OFFSET = -12
TOKEN_LENGTH = 10

WindowSource = Callable[[], int]
KeyedHash = Callable[[str], str]


class VerifyResult(IntEnum):
    """
    Outcome of a nonce check.

    INVALID is falsy so callers may write ``if tokens.verify(...)``.
    """

    INVALID = 0
    FRESH = 1   # generated in the current window
    STALE = 2   # generated in the previous window


def nonce_window_source(
    lifetime_seconds: int = 86400,
    clock: Callable[[], float] = time.time,
) -> WindowSource:
    """
    Coarse, monotonically increasing counter.

    Ticks every ``lifetime_seconds / 2`` seconds.
    """
    if lifetime_seconds < 2:
        raise ValueError("Nonce lifetime must be at least 2 seconds")

    half_life = lifetime_seconds / 2

    def current() -> int:
        return int(math.ceil(clock() / half_life))

    return current


def hmac_hasher(secret: str, digestmod=hashlib.sha256) -> KeyedHash:
    key = secret.encode("utf-8")

    def keyed_hash(data: str) -> str:
        return hmac.new(key, data.encode("utf-8"), digestmod).hexdigest()

    return keyed_hash


class TokenAuthority:
    """
    Derives and checks short-lived, action-scoped tokens.

    Owns:
    - token derivation
    - window acceptance (current + previous)

    Does NOT:
    - own a clock (window source is injected)
    - own a secret store (keyed hash is injected)
    - persist anything
    """

    __slots__ = ("_window_source", "_hash")

    def __init__(self, window_source: WindowSource, keyed_hash: KeyedHash):
        self._window_source = window_source
        self._hash = keyed_hash

    @classmethod
    def from_settings(cls, settings, clock: Optional[Callable[[], float]] = None) -> "TokenAuthority":
        return cls(
            window_source=nonce_window_source(
                settings.NONCE_LIFETIME_SECONDS,
                clock or time.time,
            ),
            keyed_hash=hmac_hasher(settings.NONCE_KEY),
        )

    def current_window(self) -> int:
        return self._window_source()

    def derive_token(self, window: int, action_scope: str, identity: str) -> str:
        digest = self._hash(f"{window}{action_scope}{identity}")
        return digest[TOKEN_OFFSET:TOKEN_OFFSET + TOKEN_LENGTH]

    def create(self, action_scope: str, identity: str) -> str:
        return self.derive_token(self.current_window(), action_scope, identity)

    def verify(self, token, action_scope: str, identity: str) -> VerifyResult:
        """
        Check a token against the current window, then the previous one.

        Never raises. Anything that is not a non-empty string is INVALID.
        """
        if not isinstance(token, str) or not token:
            return VerifyResult.INVALID

        window = self.current_window()

        # Nonce generated 0-12 hours ago
        if _same(token, self.derive_token(window, action_scope, identity)):
            return VerifyResult.FRESH

        # Nonce generated 12-24 hours ago
        if _same(token, self.derive_token(window - 1, action_scope, identity)):
            return VerifyResult.STALE

        return VerifyResult.INVALID

    @staticmethod
    def action_scope_for(raw_action_name: str) -> str:
        """
        Token scope for an action name.

        The anonymous variant shares the scope of the plain action, so a
        nonce minted before the caller was known to be anonymous still
        verifies after the rename.
        """
        action = raw_action_name
        if action.startswith(ANONYMOUS_PREFIX):
            action = action[len(ANONYMOUS_PREFIX):]
        return f"{POSTBACK_ACTION_PREFIX}{action}"


def _same(candidate: str, expected: str) -> bool:
    return hmac.compare_digest(
        candidate.encode("utf-8", "surrogatepass"),
        expected.encode("utf-8"),
    )
