"""
Rule evaluators — one facet of a submission per rule.

Every rule has the signature ``rule(submission, ctx) -> list[Finding]`` and
is pure: it reads the submission and the shared RuleContext, never mutates
either, and never raises for malformed input. A value it cannot parse
becomes a Finding.

RULES fixes the evaluation order; the scorer emits findings in this order
regardless of how the rules are scheduled.

    rate_limit               DUPLICATE            bursts and exact re-submits
    name_consistency         INCONSISTENCY        OCR name vs claimed name
    extraction_quality       FORMAT / TAMPERING   OCR confidence, bad encoding
    forgery_patterns         FRAUD / SUSPICIOUS   keywords, repeated words
    completeness             FORMAT               required/recommended fields
    temporal_consistency     FORMAT / INCONSIST.  issue date sanity
    institution_consistency  FRAUD                claimed institution, revoked issuer
    document_format          FORMAT               length and structure
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Optional

from certguard.config import ScoringConfig
from certguard.errors import RegistryUnavailable
from certguard.history import SubmissionHistory
from certguard.models import (
    Finding, FindingCategory, HistoryEntry, InstitutionProfile, Severity,
    Submission, VerificationStatus,
)
from certguard.registry import RegistryBackend

logger = logging.getLogger(__name__)

REPLACEMENT_MARKERS = ("\ufffd", "\u00ef\u00bf\u00bd")


@dataclass(frozen=True)
class RuleContext:
    """Shared read-only inputs for one scoring call."""
    config: ScoringConfig
    history: Optional[SubmissionHistory] = None
    institution: Optional[InstitutionProfile] = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # submitter's entries inside the rate window, captured when the scorer
    # recorded the submission; None means read from history
    recent: Optional[tuple[HistoryEntry, ...]] = None


def resolve_institution(registry: Optional[RegistryBackend],
                        issuer_identity: str) -> Optional[InstitutionProfile]:
    """Look up an issuer, treating an unreachable registry as no profile."""
    if registry is None or not issuer_identity:
        return None
    try:
        return registry.lookup(issuer_identity)
    except RegistryUnavailable as e:
        logger.warning("Institution check skipped: %s", e)
        return None


def _finding(rule: str, category: FindingCategory, severity: Severity,
             description: str, confidence: float) -> Finding:
    return Finding(category=category, severity=severity, description=description,
                   confidence=confidence, rule=rule)


# ─── Helpers ───────────────────────────────────────────────────────

def name_tokens(name: Optional[str]) -> set[str]:
    return set((name or "").lower().split())


def name_similarity(a: Optional[str], b: Optional[str]) -> Optional[float]:
    """Word-level Jaccard similarity; None when both names are empty."""
    tokens_a, tokens_b = name_tokens(a), name_tokens(b)
    union = tokens_a | tokens_b
    if not union:
        return None
    return len(tokens_a & tokens_b) / len(union)


def parse_issue_date(value: str, formats=()) -> Optional[datetime]:
    """Parse an issue date into an aware UTC datetime, or None."""
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in formats:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:  # Feb 29
        return moment.replace(year=moment.year - years, day=28)


@lru_cache(maxsize=64)
def _compiled(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


# ─── Rules ─────────────────────────────────────────────────────────

def rate_limit(submission: Submission, ctx: RuleContext) -> list[Finding]:
    cfg = ctx.config
    if ctx.recent is not None:
        prior = ctx.recent
    elif ctx.history is not None:
        window = timedelta(seconds=cfg.rate_window_seconds)
        prior = ctx.history.recent_for(submission.submitter_identity, window,
                                       now=submission.submitted_at)
    else:
        return []
    findings = []

    count = len(prior) + 1
    if count > cfg.rate_max_submissions:
        minutes = cfg.rate_window_seconds / 60
        findings.append(_finding(
            "rate_limit", FindingCategory.DUPLICATE, Severity.HIGH,
            f"{count} submissions from same identity in {minutes:g} minutes", 0.9))

    if any(e.content_digest == submission.content_digest for e in prior):
        findings.append(_finding(
            "rate_limit", FindingCategory.DUPLICATE, Severity.CRITICAL,
            "Identical file submitted previously", 1.0))
    return findings


def name_consistency(submission: Submission, ctx: RuleContext) -> list[Finding]:
    extracted = submission.extracted_fields.get("name")
    claimed = submission.claimed_name
    if not extracted or not claimed:
        return []
    similarity = name_similarity(extracted, claimed)
    if similarity is None or similarity >= ctx.config.name_similarity_threshold:
        return []
    return [_finding(
        "name_consistency", FindingCategory.INCONSISTENCY, Severity.HIGH,
        f'Name mismatch: extracted "{extracted}" vs provided "{claimed}"',
        1 - similarity)]


def extraction_quality(submission: Submission, ctx: RuleContext) -> list[Finding]:
    findings = []
    threshold = ctx.config.min_extraction_confidence
    confidence = submission.extraction_confidence
    if confidence < threshold:
        findings.append(_finding(
            "extraction_quality", FindingCategory.FORMAT_DEFECT, Severity.MEDIUM,
            f"Low OCR confidence: {confidence:g}%",
            (threshold - max(confidence, 0.0)) / threshold))

    text = submission.extracted_text or ""
    if any(marker in text for marker in REPLACEMENT_MARKERS):
        findings.append(_finding(
            "extraction_quality", FindingCategory.TAMPERING, Severity.MEDIUM,
            "Text encoding issues detected", 0.7))
    return findings


def forgery_patterns(submission: Submission, ctx: RuleContext) -> list[Finding]:
    cfg = ctx.config
    text = submission.extracted_text or ""
    lower = text.lower()
    findings = []

    seen = set()
    for keyword in cfg.keywords:
        keyword = keyword.lower()
        if keyword in seen:
            continue
        seen.add(keyword)
        if keyword in lower:
            findings.append(_finding(
                "forgery_patterns", FindingCategory.FRAUD, Severity.HIGH,
                f'Suspicious keyword detected: "{keyword}"', 0.8))

    # Repeated words hint at copy-paste assembly
    counts: dict[str, int] = {}
    for token in text.split():
        if len(token) > cfg.repeat_token_length:
            token = token.lower()
            counts[token] = counts.get(token, 0) + 1
    for token, count in counts.items():
        if count > cfg.repeat_max_count and len(token) > cfg.repeat_flag_length:
            findings.append(_finding(
                "forgery_patterns", FindingCategory.SUSPICIOUS_PATTERN, Severity.MEDIUM,
                f'Word "{token}" repeated {count} times', min(0.9, count / 10)))
    return findings


def completeness(submission: Submission, ctx: RuleContext) -> list[Finding]:
    fields_ = submission.extracted_fields
    findings = []
    for name in ctx.config.required_fields:
        if not fields_.get(name):
            findings.append(_finding(
                "completeness", FindingCategory.FORMAT_DEFECT, Severity.MEDIUM,
                f"Missing required field: {name}", 0.7))

    missing = [name for name in ctx.config.recommended_fields if not fields_.get(name)]
    if len(missing) > 1:
        findings.append(_finding(
            "completeness", FindingCategory.FORMAT_DEFECT, Severity.LOW,
            f"Missing recommended fields: {', '.join(missing)}", 0.5))
    return findings


def temporal_consistency(submission: Submission, ctx: RuleContext) -> list[Finding]:
    raw = submission.extracted_fields.get("issue_date")
    if not raw:
        return []
    issued = parse_issue_date(raw, ctx.config.date_formats)
    if issued is None:
        return [_finding(
            "temporal_consistency", FindingCategory.FORMAT_DEFECT, Severity.LOW,
            f"Invalid date format: {raw!r}", 0.5)]

    findings = []
    if issued > ctx.now:
        findings.append(_finding(
            "temporal_consistency", FindingCategory.INCONSISTENCY, Severity.HIGH,
            "Certificate issue date is in the future", 0.9))
    if issued < years_before(ctx.now, ctx.config.max_certificate_age_years):
        findings.append(_finding(
            "temporal_consistency", FindingCategory.INCONSISTENCY, Severity.LOW,
            "Certificate issue date is unusually old", 0.6))
    return findings


def institution_consistency(submission: Submission, ctx: RuleContext) -> list[Finding]:
    profile = ctx.institution
    if profile is None:
        return []
    findings = []
    if profile.verification_status == VerificationStatus.REVOKED:
        findings.append(_finding(
            "institution_consistency", FindingCategory.FRAUD, Severity.HIGH,
            f"Issuer {profile.issuer_identity} registration has been revoked", 0.85))

    claimed = submission.extracted_fields.get("institution")
    if claimed and profile.declared_name.strip().lower() != claimed.strip().lower():
        findings.append(_finding(
            "institution_consistency", FindingCategory.FRAUD, Severity.CRITICAL,
            f'Issuer authorized for "{profile.declared_name}" but certificate claims "{claimed}"',
            0.95))
    return findings


def document_format(submission: Submission, ctx: RuleContext) -> list[Finding]:
    cfg = ctx.config
    text = submission.extracted_text or ""
    findings = []
    if len(text) < cfg.min_text_length:
        findings.append(_finding(
            "document_format", FindingCategory.FORMAT_DEFECT, Severity.MEDIUM,
            "Certificate text is unusually short", 0.6))
    elif len(text) > cfg.max_text_length:
        findings.append(_finding(
            "document_format", FindingCategory.FORMAT_DEFECT, Severity.LOW,
            "Certificate text is unusually long", 0.4))

    patterns = (cfg.header_pattern, cfg.recipient_pattern, cfg.institution_pattern)
    if not all(_compiled(p).search(text) for p in patterns):
        findings.append(_finding(
            "document_format", FindingCategory.FORMAT_DEFECT, Severity.MEDIUM,
            "Document does not follow standard certificate format", 0.7))
    return findings


Rule = Callable[[Submission, RuleContext], list]

RULES: tuple[tuple[str, Rule], ...] = (
    ("rate_limit", rate_limit),
    ("name_consistency", name_consistency),
    ("extraction_quality", extraction_quality),
    ("forgery_patterns", forgery_patterns),
    ("completeness", completeness),
    ("temporal_consistency", temporal_consistency),
    ("institution_consistency", institution_consistency),
    ("document_format", document_format),
)
