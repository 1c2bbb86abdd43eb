"""
certguard models — value types shared by the scorer, the rules and the
history/registry stores.

Everything here is immutable once built: a Submission is created once per
scoring call, Findings are produced fresh by each rule, and a ScoreResult is
never mutated after the scorer returns it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class FindingCategory(str, Enum):
    FRAUD = "FRAUD"
    TAMPERING = "TAMPERING"
    INCONSISTENCY = "INCONSISTENCY"
    FORMAT_DEFECT = "FORMAT"
    DUPLICATE = "DUPLICATE"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class VerificationStatus(str, Enum):
    VERIFIED = "VERIFIED"
    PENDING = "PENDING"
    REVOKED = "REVOKED"


def parse_timestamp(value) -> datetime:
    """Parse an ISO 8601 string (or datetime) into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Canonical UTC rendering used in digests and JSON output."""
    return parse_timestamp(dt).isoformat().replace("+00:00", "Z")


# ─── Submission ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExtractedFields:
    """Structured fields pulled out of the certificate text by OCR."""
    name: Optional[str] = None
    institution: Optional[str] = None
    course: Optional[str] = None
    grade: Optional[str] = None
    issue_date: Optional[str] = None
    roll_number: Optional[str] = None
    certificate_id: Optional[str] = None

    def get(self, name: str) -> Optional[str]:
        value = getattr(self, name, None)
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ExtractedFields":
        data = data or {}
        known = {k: data.get(k) for k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class Submission:
    """One certificate submitted for scoring."""
    submitter_identity: str
    issuer_identity: str
    claimed_name: str
    submitted_at: datetime
    extracted_text: str
    extraction_confidence: float
    extracted_fields: ExtractedFields = field(default_factory=ExtractedFields)
    content_digest: str = ""

    def __post_init__(self):
        object.__setattr__(self, "submitted_at", parse_timestamp(self.submitted_at))
        object.__setattr__(self, "extraction_confidence", float(self.extraction_confidence))
        if not self.content_digest:
            digest = hashlib.sha256((self.extracted_text or "").encode("utf-8")).hexdigest()
            object.__setattr__(self, "content_digest", digest)

    @classmethod
    def from_dict(cls, data: dict) -> "Submission":
        """Build from the JSON shape handed over by the extraction front-end."""
        return cls(
            submitter_identity=data["submitter_identity"],
            issuer_identity=data.get("issuer_identity", ""),
            claimed_name=data.get("claimed_name", ""),
            submitted_at=data.get("submitted_at") or datetime.now(timezone.utc),
            extracted_text=data.get("extracted_text", ""),
            extraction_confidence=float(data.get("extraction_confidence", 0)),
            extracted_fields=ExtractedFields.from_dict(data.get("extracted_fields")),
            content_digest=data.get("content_digest", ""),
        )

    def to_dict(self) -> dict:
        return {
            "submitter_identity": self.submitter_identity,
            "issuer_identity": self.issuer_identity,
            "claimed_name": self.claimed_name,
            "submitted_at": format_timestamp(self.submitted_at),
            "extracted_text": self.extracted_text,
            "extraction_confidence": self.extraction_confidence,
            "extracted_fields": asdict(self.extracted_fields),
            "content_digest": self.content_digest,
        }


# ─── Findings & results ────────────────────────────────────────────

@dataclass(frozen=True)
class Finding:
    """A single rule violation or risk signal."""
    category: FindingCategory
    severity: Severity
    description: str
    confidence: float
    rule: str = ""

    def clamped(self) -> "Finding":
        return replace(self, confidence=min(1.0, max(0.0, self.confidence)))

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "description": self.description,
            "confidence": self.confidence,
            "rule": self.rule,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Finding":
        return cls(
            category=FindingCategory(data["category"]),
            severity=Severity(data["severity"]),
            description=data.get("description", ""),
            confidence=float(data["confidence"]),
            rule=data.get("rule", ""),
        )


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one submission."""
    anomaly_score: float
    trust_index: float
    risk_level: RiskLevel
    findings: tuple[Finding, ...]
    overall_confidence: float
    analysis_digest: str
    submitted_at: datetime
    extraction_confidence: float

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity == severity)

    def credential_claims(self) -> dict:
        """Claims embedded into the issued credential payload."""
        return {
            "anomalyScore": self.anomaly_score,
            "flags": [f.description for f in self.findings],
        }

    def to_dict(self) -> dict:
        return {
            "anomaly_score": self.anomaly_score,
            "trust_index": self.trust_index,
            "risk_level": self.risk_level.value,
            "findings": [f.to_dict() for f in self.findings],
            "overall_confidence": self.overall_confidence,
            "analysis_digest": self.analysis_digest,
            "submitted_at": format_timestamp(self.submitted_at),
            "extraction_confidence": self.extraction_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScoreResult":
        return cls(
            anomaly_score=float(data["anomaly_score"]),
            trust_index=float(data["trust_index"]),
            risk_level=RiskLevel(data["risk_level"]),
            findings=tuple(Finding.from_dict(f) for f in data.get("findings", [])),
            overall_confidence=float(data["overall_confidence"]),
            analysis_digest=data.get("analysis_digest", ""),
            submitted_at=parse_timestamp(data["submitted_at"]),
            extraction_confidence=float(data["extraction_confidence"]),
        )


# ─── History & registry records ────────────────────────────────────

@dataclass(frozen=True)
class HistoryEntry:
    submitter_identity: str
    submitted_at: datetime
    content_digest: str

    @classmethod
    def from_submission(cls, submission: Submission) -> "HistoryEntry":
        return cls(submission.submitter_identity, submission.submitted_at, submission.content_digest)


@dataclass(frozen=True)
class InstitutionProfile:
    """Declared metadata for an issuing identity, set at registration."""
    issuer_identity: str
    declared_name: str
    trust_score: float = 0.0
    authorized_courses: frozenset = frozenset()
    verification_status: VerificationStatus = VerificationStatus.VERIFIED
    registered_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "issuer_identity": self.issuer_identity,
            "declared_name": self.declared_name,
            "trust_score": self.trust_score,
            "authorized_courses": sorted(self.authorized_courses),
            "verification_status": self.verification_status.value,
            "registered_at": format_timestamp(self.registered_at) if self.registered_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InstitutionProfile":
        registered = data.get("registered_at")
        return cls(
            issuer_identity=data["issuer_identity"],
            declared_name=data["declared_name"],
            trust_score=float(data.get("trust_score", 0.0)),
            authorized_courses=frozenset(data.get("authorized_courses", [])),
            verification_status=VerificationStatus(data.get("verification_status", "VERIFIED")),
            registered_at=parse_timestamp(registered) if registered else None,
        )
