"""certguard — rule-based fraud and trust scoring for certificate submissions."""

from certguard.models import (
    ExtractedFields, Submission, Finding, FindingCategory, Severity,
    RiskLevel, ScoreResult, HistoryEntry, InstitutionProfile, VerificationStatus,
)
from certguard.config import ScoringConfig
from certguard.errors import CertguardError, ConfigError, RegistryUnavailable, AnchorError
from certguard.history import SubmissionHistory
from certguard.registry import RegistryBackend, InstitutionRegistry, RemoteInstitutionRegistry
from certguard.rules import RULES, RuleContext, name_similarity
from certguard.scorer import CertificateScorer, analysis_digest, recompute_digest
from certguard.audit import DecisionLog, DecisionEntry, DecisionEvent, DecisionLogCorrupted
from certguard.anchor import AnchorRecord, ScorerKey, rescale
from certguard.sweeper import HistorySweeper

__all__ = [
    "ExtractedFields",
    "Submission",
    "Finding",
    "FindingCategory",
    "Severity",
    "RiskLevel",
    "ScoreResult",
    "HistoryEntry",
    "InstitutionProfile",
    "VerificationStatus",
    "ScoringConfig",
    "CertguardError",
    "ConfigError",
    "RegistryUnavailable",
    "AnchorError",
    "SubmissionHistory",
    "RegistryBackend",
    "InstitutionRegistry",
    "RemoteInstitutionRegistry",
    "RULES",
    "RuleContext",
    "name_similarity",
    "CertificateScorer",
    "analysis_digest",
    "recompute_digest",
    "DecisionLog",
    "DecisionEntry",
    "DecisionEvent",
    "DecisionLogCorrupted",
    "AnchorRecord",
    "ScorerKey",
    "rescale",
    "HistorySweeper",
]
