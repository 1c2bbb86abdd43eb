"""
certguard.anchor — ledger anchoring payloads.

The ledger client stores an integer anomaly score next to the content and
analysis digests. On-chain contracts take a uint8 (0-255); off-chain
stores use a percentage (0-100). AnchorRecord carries that payload, signed
by the scorer's Ed25519 key so the ledger side can check which scorer
produced it.
"""

import hashlib
import json
import os
from datetime import datetime, timezone
from typing import Optional

from nacl.signing import SigningKey, VerifyKey
from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError

from certguard.errors import AnchorError
from certguard.models import ScoreResult, Submission

ONCHAIN_SCALE = 255
OFFCHAIN_SCALE = 100


def rescale(score: float, scale: int = ONCHAIN_SCALE) -> int:
    """Map a 0-1 anomaly score onto an integer 0..scale."""
    if scale not in (ONCHAIN_SCALE, OFFCHAIN_SCALE):
        raise AnchorError(f"unsupported scale {scale}; use {ONCHAIN_SCALE} or {OFFCHAIN_SCALE}")
    return max(0, min(scale, int(round(score * scale))))


# ─── Scorer key ────────────────────────────────────────────────────

class ScorerKey:
    """Ed25519 keypair identifying one scorer deployment."""

    def __init__(self, signing_key: Optional[SigningKey] = None):
        self.signing_key = signing_key or SigningKey.generate()
        self.verify_key = self.signing_key.verify_key

    @property
    def public_key_hex(self) -> str:
        return self.verify_key.encode(encoder=HexEncoder).decode()

    @property
    def key_id(self) -> str:
        return f"scorer:{hashlib.sha256(self.public_key_hex.encode()).hexdigest()[:16]}"

    def sign(self, data: bytes) -> str:
        return self.signing_key.sign(data).signature.hex()

    @classmethod
    def from_private_key(cls, hex_key: str) -> "ScorerKey":
        return cls(SigningKey(hex_key.encode(), encoder=HexEncoder))

    @classmethod
    def load(cls, path: str) -> "ScorerKey":
        with open(path) as f:
            data = json.load(f)
        try:
            return cls.from_private_key(data["private_key"])
        except (KeyError, ValueError, TypeError) as e:
            raise AnchorError(f"{path}: not a scorer key file ({e})") from e

    def save(self, path: str):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w") as f:
            json.dump({
                "key_id": self.key_id,
                "public_key": self.public_key_hex,
                "private_key": self.signing_key.encode(encoder=HexEncoder).decode(),
                "created_at": datetime.now(timezone.utc).isoformat(),
            }, f, indent=2)
        os.chmod(path, 0o600)


# ─── Anchor record ─────────────────────────────────────────────────

class AnchorRecord:
    """What the ledger client anchors for one scored certificate."""

    def __init__(self, certificate_id: str, content_digest: str, analysis_digest: str,
                 anomaly_score: int, scale: int = ONCHAIN_SCALE,
                 scorer_key: Optional[str] = None, signature: Optional[str] = None):
        self.certificate_id = certificate_id
        self.content_digest = content_digest
        self.analysis_digest = analysis_digest
        self.anomaly_score = anomaly_score
        self.scale = scale
        self.scorer_key = scorer_key
        self.signature = signature

    @classmethod
    def build(cls, submission: Submission, result: ScoreResult,
              scale: int = ONCHAIN_SCALE) -> "AnchorRecord":
        certificate_id = submission.extracted_fields.get("certificate_id") or submission.content_digest[:16]
        return cls(
            certificate_id=certificate_id,
            content_digest=submission.content_digest,
            analysis_digest=result.analysis_digest,
            anomaly_score=rescale(result.anomaly_score, scale),
            scale=scale,
        )

    @property
    def payload(self) -> bytes:
        """Canonical bytes for signing."""
        return json.dumps({
            "certificate_id": self.certificate_id,
            "content_digest": self.content_digest,
            "analysis_digest": self.analysis_digest,
            "anomaly_score": self.anomaly_score,
            "scale": self.scale,
        }, sort_keys=True, separators=(",", ":")).encode()

    def sign(self, key: ScorerKey) -> "AnchorRecord":
        self.scorer_key = key.public_key_hex
        self.signature = key.sign(self.payload)
        return self

    def verify(self) -> bool:
        if not self.signature or not self.scorer_key:
            return False
        try:
            vk = VerifyKey(self.scorer_key.encode(), encoder=HexEncoder)
            vk.verify(self.payload, bytes.fromhex(self.signature))
            return True
        except (BadSignatureError, ValueError, TypeError):
            return False

    def to_dict(self) -> dict:
        return {
            "certificate_id": self.certificate_id,
            "content_digest": self.content_digest,
            "analysis_digest": self.analysis_digest,
            "anomaly_score": self.anomaly_score,
            "scale": self.scale,
            "scorer_key": self.scorer_key,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnchorRecord":
        try:
            return cls(
                certificate_id=data["certificate_id"],
                content_digest=data["content_digest"],
                analysis_digest=data["analysis_digest"],
                anomaly_score=int(data["anomaly_score"]),
                scale=int(data.get("scale", ONCHAIN_SCALE)),
                scorer_key=data.get("scorer_key"),
                signature=data.get("signature"),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise AnchorError(f"malformed anchor record: {e}") from e
