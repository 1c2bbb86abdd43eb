"""
certguard.config — tunable thresholds, keyword lists and weights.

Everything the rules compare against lives here so the scoring policy can
be tuned without code changes.

Sources, lowest precedence first:
    defaults below
    ScoringConfig.from_file(path)   — JSON object, same keys as the fields
    ScoringConfig.from_env()        — CERTGUARD_* environment variables

Environment:
    CERTGUARD_RATE_WINDOW      — rate-limit window in seconds (default 1800)
    CERTGUARD_RATE_MAX         — submissions allowed per window (default 3)
    CERTGUARD_HISTORY_CAP      — entries kept per identity (default 20)
    CERTGUARD_RETENTION        — history retention in seconds (default 86400)
    CERTGUARD_SWEEP_INTERVAL   — sweeper interval in seconds (default 3600)
    CERTGUARD_KEYWORDS         — comma-separated forgery keyword list
    CERTGUARD_REGISTRY_URL     — base URL of a remote institution registry
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional

from certguard.errors import ConfigError


DEFAULT_KEYWORDS = (
    "copy", "duplicate", "fake", "forged", "counterfeit", "photoshop",
    "edited", "modified", "template", "sample", "example", "test",
)

# Added to the anomaly score once per finding emitted by the rule.
DEFAULT_WEIGHTS = {
    "rate_limit": 0.15,
    "name_consistency": 0.20,
    "extraction_quality": 0.10,
    "forgery_patterns": 0.25,
    "completeness": 0.10,
    "temporal_consistency": 0.15,
    "institution_consistency": 0.20,
    "document_format": 0.10,
}

# Fallback for findings that do not name a known rule.
DEFAULT_CATEGORY_WEIGHTS = {
    "FRAUD": 0.25,
    "TAMPERING": 0.10,
    "INCONSISTENCY": 0.15,
    "FORMAT": 0.10,
    "DUPLICATE": 0.15,
    "SUSPICIOUS_PATTERN": 0.25,
}

DEFAULT_DATE_FORMATS = (
    "%d %B %Y", "%B %d, %Y", "%B %d %Y", "%d %b %Y", "%b %d, %Y",
    "%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d", "%d-%m-%Y",
)


@dataclass
class ScoringConfig:
    # rate limit
    rate_window_seconds: float = 30 * 60
    rate_max_submissions: int = 3
    history_cap: int = 20
    history_retention_seconds: float = 24 * 3600
    sweep_interval_seconds: float = 3600

    # name consistency
    name_similarity_threshold: float = 0.6

    # extraction quality
    min_extraction_confidence: float = 70.0

    # forgery patterns
    keywords: tuple = DEFAULT_KEYWORDS
    # tokens longer than repeat_token_length are counted; a counted token
    # longer than repeat_flag_length seen more than repeat_max_count times
    # is flagged
    repeat_token_length: int = 3
    repeat_flag_length: int = 4
    repeat_max_count: int = 5

    # completeness
    required_fields: tuple = ("name", "institution")
    recommended_fields: tuple = ("course", "issue_date")

    # temporal
    max_certificate_age_years: int = 50
    date_formats: tuple = DEFAULT_DATE_FORMATS

    # document format
    min_text_length: int = 100
    max_text_length: int = 10000
    header_pattern: str = r"certificate|diploma|degree"
    recipient_pattern: str = r"name|student|recipient"
    institution_pattern: str = r"university|college|institute|school"

    # aggregation
    weights: dict = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    category_weights: dict = field(default_factory=lambda: dict(DEFAULT_CATEGORY_WEIGHTS))
    high_confidence_threshold: float = 90.0
    high_confidence_bonus: float = 0.1
    critical_penalty: float = 0.3
    institution_trust_threshold: float = 0.8
    institution_bonus: float = 0.1

    registry_url: Optional[str] = None

    def validate(self) -> "ScoringConfig":
        for rule, weight in self.weights.items():
            if weight < 0:
                raise ConfigError(f"weight for '{rule}' must be >= 0, got {weight}")
        if self.rate_window_seconds <= 0:
            raise ConfigError("rate_window_seconds must be positive")
        if self.history_cap < 1:
            raise ConfigError("history_cap must be >= 1")
        if self.history_retention_seconds <= 0:
            raise ConfigError("history_retention_seconds must be positive")
        if not 0 <= self.name_similarity_threshold <= 1:
            raise ConfigError("name_similarity_threshold must be within [0, 1]")
        if self.min_extraction_confidence <= 0:
            raise ConfigError("min_extraction_confidence must be positive")
        for category, weight in self.category_weights.items():
            if weight < 0:
                raise ConfigError(f"category weight for '{category}' must be >= 0, got {weight}")
        return self

    def weight_for(self, rule: str, category: str = "") -> float:
        """Anomaly weight of one finding: by rule, else by category."""
        if rule in self.weights:
            return self.weights[rule]
        return self.category_weights.get(category, 0.0)

    @classmethod
    def from_dict(cls, data: dict, base: Optional["ScoringConfig"] = None) -> "ScoringConfig":
        base = base or cls()
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")
        updates = {}
        for key, value in data.items():
            if key in ("weights", "category_weights"):
                merged = dict(getattr(base, key))
                merged.update(value)
                value = merged
            elif isinstance(value, list):
                value = tuple(value)
            updates[key] = value
        return replace(base, **updates).validate()

    @classmethod
    def from_file(cls, path: str, base: Optional["ScoringConfig"] = None) -> "ScoringConfig":
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"{path}: invalid JSON ({e})") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object")
        return cls.from_dict(data, base=base)

    @classmethod
    def from_env(cls, base: Optional["ScoringConfig"] = None) -> "ScoringConfig":
        base = base or cls()
        env = os.environ
        updates: dict = {}
        try:
            if "CERTGUARD_RATE_WINDOW" in env:
                updates["rate_window_seconds"] = float(env["CERTGUARD_RATE_WINDOW"])
            if "CERTGUARD_RATE_MAX" in env:
                updates["rate_max_submissions"] = int(env["CERTGUARD_RATE_MAX"])
            if "CERTGUARD_HISTORY_CAP" in env:
                updates["history_cap"] = int(env["CERTGUARD_HISTORY_CAP"])
            if "CERTGUARD_RETENTION" in env:
                updates["history_retention_seconds"] = float(env["CERTGUARD_RETENTION"])
            if "CERTGUARD_SWEEP_INTERVAL" in env:
                updates["sweep_interval_seconds"] = float(env["CERTGUARD_SWEEP_INTERVAL"])
        except ValueError as e:
            raise ConfigError(f"invalid numeric environment value: {e}") from e
        keywords = env.get("CERTGUARD_KEYWORDS", "")
        if keywords.strip():
            updates["keywords"] = tuple(k.strip().lower() for k in keywords.split(",") if k.strip())
        registry_url = env.get("CERTGUARD_REGISTRY_URL", "")
        if registry_url:
            updates["registry_url"] = registry_url
        return replace(base, **updates).validate()
