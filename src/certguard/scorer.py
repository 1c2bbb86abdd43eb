"""
Certificate scorer — runs the rules and folds their findings into one
bounded risk assessment.

    anomaly_score = clamp(Σ weight(finding), 0, 1)
    trust_index   = clamp(1 - anomaly + ocr_bonus - 0.3·#CRITICAL + institution_bonus, 0, 1)
    risk_level    = CRITICAL | HIGH | MEDIUM | LOW  (see risk_level())
    confidence    = clamp((90 - 10·#findings + ocr_confidence) / 2, 0, 100)

Weights are non-negative, so adding a finding never lowers the anomaly
score. The analysis digest is a SHA-256 over a canonical JSON rendering of
the findings and scores and is reproducible across processes.
"""

from __future__ import annotations

import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

from certguard.audit import DecisionEvent, DecisionLog
from certguard.config import ScoringConfig
from certguard.history import SubmissionHistory
from certguard.models import (
    Finding, FindingCategory, InstitutionProfile, RiskLevel, ScoreResult,
    Severity, Submission, VerificationStatus, format_timestamp, parse_timestamp,
)
from certguard.registry import RegistryBackend
from certguard.rules import RULES, Rule, RuleContext, resolve_institution

logger = logging.getLogger(__name__)

SCORE_PRECISION = 6


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# ─── Aggregate metrics ─────────────────────────────────────────────

def anomaly_score(findings: Iterable[Finding], config: ScoringConfig) -> float:
    total = 0.0
    for f in findings:
        weight = config.weight_for(f.rule, f.category.value)
        assert weight >= 0, f"negative weight {weight} for {f.rule or f.category.value}"
        total += weight
    return round(clamp(total), SCORE_PRECISION)


def trust_index(anomaly: float, findings: Sequence[Finding], extraction_confidence: float,
                institution: Optional[InstitutionProfile], config: ScoringConfig) -> float:
    trust = 1.0 - anomaly
    if extraction_confidence > config.high_confidence_threshold:
        trust += config.high_confidence_bonus
    criticals = sum(1 for f in findings if f.severity == Severity.CRITICAL)
    trust -= criticals * config.critical_penalty
    if (institution is not None
            and institution.verification_status == VerificationStatus.VERIFIED
            and institution.trust_score > config.institution_trust_threshold):
        trust += config.institution_bonus
    return round(clamp(trust), SCORE_PRECISION)


def risk_level(anomaly: float, findings: Sequence[Finding]) -> RiskLevel:
    criticals = sum(1 for f in findings if f.severity == Severity.CRITICAL)
    highs = sum(1 for f in findings if f.severity == Severity.HIGH)
    if criticals > 0 or anomaly > 0.8:
        return RiskLevel.CRITICAL
    if highs > 1 or anomaly > 0.6:
        return RiskLevel.HIGH
    if anomaly > 0.3:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def overall_confidence(finding_count: int, extraction_confidence: float) -> float:
    return clamp((90 - finding_count * 10 + extraction_confidence) / 2, 0.0, 100.0)


def analysis_digest(findings: Sequence[Finding], anomaly: float, trust: float,
                    submitted_at: datetime, extraction_confidence: float) -> str:
    """SHA-256 over the canonical analysis vector."""
    vector = {
        "findings": [
            {"type": f.category.value, "severity": f.severity.value,
             "confidence": float(f.confidence)}
            for f in findings
        ],
        "anomalyScore": float(anomaly),
        "trustIndex": float(trust),
        "timestamp": format_timestamp(submitted_at),
        "ocrConfidence": float(extraction_confidence),
    }
    canonical = json.dumps(vector, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


def recompute_digest(result: ScoreResult) -> str:
    return analysis_digest(result.findings, result.anomaly_score, result.trust_index,
                           result.submitted_at, result.extraction_confidence)


# ─── Scorer ────────────────────────────────────────────────────────

class CertificateScorer:
    """Score certificate submissions.

    History and registry are injected and owned by the caller: create them
    once per process, or once per test for isolation.

    Usage:
        scorer = CertificateScorer(history=SubmissionHistory(), registry=registry)
        result = scorer.score(submission)
        if result.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            hold_for_review(result)
    """

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        history: Optional[SubmissionHistory] = None,
        registry: Optional[RegistryBackend] = None,
        decision_log: Optional[DecisionLog] = None,
        rules: Sequence[tuple[str, Rule]] = RULES,
        parallel: bool = False,
        max_workers: Optional[int] = None,
    ):
        self.config = (config or ScoringConfig()).validate()
        self.history = history if history is not None else SubmissionHistory(cap=self.config.history_cap)
        self.registry = registry
        self.decision_log = decision_log
        self.rules = tuple(rules)
        self._executor = ThreadPoolExecutor(max_workers=max_workers or max(1, len(self.rules))) if parallel else None

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _run_rule(self, name: str, rule: Rule, submission: Submission,
                  ctx: RuleContext) -> list[Finding]:
        try:
            return list(rule(submission, ctx))
        except Exception as e:
            logger.exception("Evaluator %s failed for %s", name, submission.submitter_identity)
            if self.decision_log is not None:
                self.decision_log.record(DecisionEvent.EVALUATOR_DEGRADED,
                                         submission.submitter_identity,
                                         {"evaluator": name, "error": str(e)})
            return [Finding(FindingCategory.FORMAT_DEFECT, Severity.LOW,
                            f"Evaluator {name} degraded: {type(e).__name__}", 0.5, rule=name)]

    def evaluate(self, submission: Submission, ctx: RuleContext) -> list[Finding]:
        """Run every rule and return findings in rule order."""
        if self._executor is not None:
            batches = self._executor.map(
                lambda item: self._run_rule(item[0], item[1], submission, ctx), self.rules)
        else:
            batches = (self._run_rule(name, rule, submission, ctx) for name, rule in self.rules)

        findings = []
        for batch in batches:
            for f in batch:
                assert 0.0 <= f.confidence <= 1.0, \
                    f"{f.rule}: confidence {f.confidence} outside [0, 1]"
                findings.append(f.clamped())
        return findings

    def score(self, submission: Submission, now: Optional[datetime] = None) -> ScoreResult:
        """Score one submission and record it into the history.

        The submission is recorded in the same step that reads its rate
        window, so concurrent calls for one identity see each other.
        """
        now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
        institution = resolve_institution(self.registry, submission.issuer_identity)
        window = timedelta(seconds=self.config.rate_window_seconds)
        recent = tuple(self.history.check_and_record(submission, window))
        ctx = RuleContext(config=self.config, history=self.history,
                          institution=institution, now=now, recent=recent)

        findings = self.evaluate(submission, ctx)
        anomaly = anomaly_score(findings, self.config)
        trust = trust_index(anomaly, findings, submission.extraction_confidence,
                            institution, self.config)
        result = ScoreResult(
            anomaly_score=anomaly,
            trust_index=trust,
            risk_level=risk_level(anomaly, findings),
            findings=tuple(findings),
            overall_confidence=overall_confidence(len(findings), submission.extraction_confidence),
            analysis_digest=analysis_digest(findings, anomaly, trust, submission.submitted_at,
                                            submission.extraction_confidence),
            submitted_at=submission.submitted_at,
            extraction_confidence=submission.extraction_confidence,
        )

        logger.info("Scored submission from %s: anomaly=%.3f trust=%.3f risk=%s findings=%d",
                    submission.submitter_identity, anomaly, trust,
                    result.risk_level.value, len(findings))
        if self.decision_log is not None:
            self.decision_log.record(DecisionEvent.SUBMISSION_SCORED, submission.submitter_identity, {
                "content_digest": submission.content_digest,
                "anomaly_score": anomaly,
                "trust_index": trust,
                "risk_level": result.risk_level.value,
                "analysis_digest": result.analysis_digest,
            })
        return result
