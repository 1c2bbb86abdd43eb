"""Exception types raised by certguard."""

from __future__ import annotations


class CertguardError(Exception):
    """Base class for all certguard errors."""


class ConfigError(CertguardError, ValueError):
    """Raised when a ScoringConfig holds an unusable value."""


class RegistryUnavailable(CertguardError):
    """Raised by a registry backend that cannot answer a lookup.

    The institution evaluator treats this as "no finding" so an outage
    never blocks scoring.
    """

    def __init__(self, issuer: str, reason: str = ""):
        self.issuer = issuer
        self.reason = reason
        super().__init__(f"Institution registry unavailable for '{issuer}'" + (f": {reason}" if reason else ""))


class AnchorError(CertguardError):
    """Raised when an anchor record cannot be built or verified."""
