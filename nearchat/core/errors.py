# nearchat/core/errors.py


class NearChatError(Exception):
    """Base class for every error raised by the core."""

    retriable = False


class EntropyExhausted(NearChatError):
    """The OS entropy source failed. Identities cannot be minted; abort."""


class IdentityExpired(NearChatError):
    """The identity is expired, past its grace window, or unknown."""


class NotNearbyError(NearChatError):
    """The target identity is not in the current nearby snapshot."""


class AuthenticationError(NearChatError):
    """An envelope failed to verify (tampered, wrong key, malformed)."""


class RelayError(NearChatError):
    retriable = True


class RelayTimeout(RelayError):
    """A relay call did not complete within its timeout."""


class RelayUnavailable(RelayError):
    """The relay could not be reached."""
