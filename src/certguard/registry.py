"""
certguard.registry — institution profiles keyed by issuing identity.

Backends: InstitutionRegistry (in-memory), RemoteInstitutionRegistry (HTTP)

Registration happens outside the scorer; the institution rule only ever
calls ``lookup()``. A backend that cannot answer raises RegistryUnavailable
and the rule fails open.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import httpx

from certguard.audit import DecisionEvent, DecisionLog
from certguard.errors import RegistryUnavailable
from certguard.models import InstitutionProfile, VerificationStatus

logger = logging.getLogger(__name__)


class RegistryBackend(ABC):
    """Read interface the scorer depends on."""

    @abstractmethod
    def lookup(self, issuer_identity: str) -> Optional[InstitutionProfile]:
        """Return the profile for an issuer, or None if it was never registered.

        Revoked and pending profiles are returned with their status; callers
        decide what a non-VERIFIED issuer means.

        Raises RegistryUnavailable when the backend cannot be reached.
        """
        ...


# ─── In-memory registry ────────────────────────────────────────────

class InstitutionRegistry(RegistryBackend):
    """Thread-safe in-memory registry, owned by the caller.

    Usage:
        registry = InstitutionRegistry()
        registry.register(InstitutionProfile("0xissuer", "Springfield University", trust_score=0.9))
        profile = registry.lookup("0xissuer")
        registry.revoke("0xissuer")
    """

    def __init__(self, profiles: Optional[list[InstitutionProfile]] = None,
                 decision_log: Optional[DecisionLog] = None):
        self._profiles: dict[str, InstitutionProfile] = {}
        self._lock = threading.RLock()
        self.decision_log = decision_log
        for profile in profiles or []:
            self.register(profile)

    def register(self, profile: InstitutionProfile) -> InstitutionProfile:
        if not 0.0 <= profile.trust_score <= 1.0:
            raise ValueError(f"trust_score must be within [0, 1], got {profile.trust_score}")
        if profile.registered_at is None:
            profile = replace(profile, registered_at=datetime.now(timezone.utc))
        with self._lock:
            self._profiles[profile.issuer_identity] = profile
        logger.info("Registered institution %s for issuer %s",
                    profile.declared_name, profile.issuer_identity)
        if self.decision_log is not None:
            self.decision_log.record(DecisionEvent.INSTITUTION_REGISTERED, profile.issuer_identity,
                                     {"declared_name": profile.declared_name,
                                      "trust_score": profile.trust_score})
        return profile

    def lookup(self, issuer_identity: str) -> Optional[InstitutionProfile]:
        with self._lock:
            profile = self._profiles.get(issuer_identity)
        return profile

    def revoke(self, issuer_identity: str) -> bool:
        """Mark an issuer revoked. Returns False if it was never registered."""
        with self._lock:
            profile = self._profiles.get(issuer_identity)
            if profile is None:
                return False
            self._profiles[issuer_identity] = replace(
                profile, verification_status=VerificationStatus.REVOKED)
        logger.info("Revoked institution for issuer %s", issuer_identity)
        if self.decision_log is not None:
            self.decision_log.record(DecisionEvent.INSTITUTION_REVOKED, issuer_identity)
        return True

    def list(self, include_revoked: bool = False) -> list[InstitutionProfile]:
        with self._lock:
            profiles = list(self._profiles.values())
        if include_revoked:
            return profiles
        return [p for p in profiles if p.verification_status != VerificationStatus.REVOKED]

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    def __contains__(self, issuer_identity: str) -> bool:
        with self._lock:
            return issuer_identity in self._profiles

    @classmethod
    def load_json(cls, path: str) -> "InstitutionRegistry":
        """Load a registry from a JSON list of profile objects."""
        with open(path) as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("institutions", [])
        return cls([InstitutionProfile.from_dict(item) for item in data])

    def export_json(self) -> str:
        return json.dumps([p.to_dict() for p in self.list(include_revoked=True)], indent=2)


# ─── Remote registry ───────────────────────────────────────────────

class RemoteInstitutionRegistry(RegistryBackend):
    """Registry served over HTTP at ``{base_url}/institutions/{issuer}``.

    404 means "not registered". Transport errors, timeouts and 5xx responses
    raise RegistryUnavailable.
    """

    def __init__(self, base_url: str, timeout: float = 5.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def lookup(self, issuer_identity: str) -> Optional[InstitutionProfile]:
        try:
            resp = self._http.get(f"/institutions/{issuer_identity}")
        except httpx.HTTPError as e:
            logger.warning("Registry lookup failed for %s: %s", issuer_identity, e)
            raise RegistryUnavailable(issuer_identity, str(e)) from e

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise RegistryUnavailable(issuer_identity, f"registry returned {resp.status_code}")

        try:
            data = resp.json()
            data.setdefault("issuer_identity", issuer_identity)
            profile = InstitutionProfile.from_dict(data)
        except (ValueError, KeyError, AttributeError) as e:
            raise RegistryUnavailable(issuer_identity, f"malformed registry response: {e}") from e

        return profile
