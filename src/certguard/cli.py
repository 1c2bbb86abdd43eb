#!/usr/bin/env python3
"""
certguard CLI — offline scoring of certificate submissions.

Commands:
    score          - Score one submission (or a JSON list, sharing history)
    digest         - Recompute and check the analysis digest of a stored result
    keygen         - Create a scorer signing key
    anchor         - Score a submission and emit a signed ledger anchor record
    verify-anchor  - Verify a signed anchor record
    log            - Verify a decision log file and show its entries
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from typing import Optional

from certguard.audit import DecisionEvent


def _output(data, args: argparse.Namespace, human_fn=None):
    """Output data as JSON or pretty-printed."""
    if getattr(args, "json", False) or human_fn is None:
        print(json.dumps(data, indent=2, default=str))
    else:
        human_fn(data)


def _read_json(path: str):
    if path == "-":
        return json.load(sys.stdin)
    with open(path) as f:
        return json.load(f)


def _load_config(args):
    from certguard.config import ScoringConfig

    config = ScoringConfig()
    if getattr(args, "config", None):
        config = ScoringConfig.from_file(args.config, base=config)
    return ScoringConfig.from_env(base=config)


def _load_registry(source: Optional[str], config):
    from certguard.registry import InstitutionRegistry, RemoteInstitutionRegistry

    source = source or config.registry_url
    if not source:
        return None
    if source.startswith(("http://", "https://")):
        return RemoteInstitutionRegistry(source)
    return InstitutionRegistry.load_json(source)


def _build_scorer(args):
    from certguard.audit import DecisionLog
    from certguard.history import SubmissionHistory
    from certguard.scorer import CertificateScorer

    config = _load_config(args)
    log_path = getattr(args, "decision_log", None)
    return CertificateScorer(
        config=config,
        history=SubmissionHistory(cap=config.history_cap),
        registry=_load_registry(getattr(args, "registry", None), config),
        decision_log=DecisionLog.load(log_path) if log_path else None,
    )


def _print_result(d: dict):
    risk = d["risk_level"]
    marker = {"LOW": "✅", "MEDIUM": "⚠️", "HIGH": "🚩", "CRITICAL": "❌"}.get(risk, "•")
    print(f"{marker} {risk} risk — {d.get('submitter_identity', '')}")
    print(f"   Anomaly score:  {d['anomaly_score']:.3f}")
    print(f"   Trust index:    {d['trust_index']:.3f}")
    print(f"   Confidence:     {d['overall_confidence']:.1f}")
    print(f"   Digest:         {d['analysis_digest']}")
    for f in d["findings"]:
        print(f"   [{f['severity']:<8}] {f['category']:<18} {f['description']} ({f['confidence']:.2f})")


# ─── Commands ──────────────────────────────────────────────────────

def cmd_score(args):
    """Score one submission, or a list of submissions in order."""
    from certguard.models import Submission

    data = _read_json(args.file)
    items = data if isinstance(data, list) else [data]

    results = []
    with _build_scorer(args) as scorer:
        for item in items:
            submission = Submission.from_dict(item)
            result = scorer.score(submission, now=args.now)
            out = result.to_dict()
            out["submitter_identity"] = submission.submitter_identity
            results.append(out)

    def human(rs):
        for r in rs:
            _print_result(r)

    _output(results if isinstance(data, list) else results[0], args,
            human if isinstance(data, list) else _print_result)
    return results


def cmd_digest(args):
    """Recompute the analysis digest of a stored ScoreResult."""
    from certguard.models import ScoreResult
    from certguard.scorer import recompute_digest

    result = ScoreResult.from_dict(_read_json(args.file))
    expected = recompute_digest(result)
    out = {
        "stored": result.analysis_digest,
        "recomputed": expected,
        "match": expected == result.analysis_digest,
    }

    def human(d):
        if d["match"]:
            print(f"✅ Digest matches: {d['recomputed']}")
        else:
            print("❌ Digest mismatch")
            print(f"   Stored:     {d['stored']}")
            print(f"   Recomputed: {d['recomputed']}")

    _output(out, args, human)
    if not out["match"]:
        sys.exit(1)
    return out


def cmd_keygen(args):
    """Create a scorer signing key."""
    from certguard.anchor import ScorerKey

    key = ScorerKey()
    key.save(args.output)
    out = {"key_id": key.key_id, "public_key": key.public_key_hex, "path": args.output}

    def human(d):
        print("🔑 Scorer key created")
        print(f"   ID:         {d['key_id']}")
        print(f"   Public key: {d['public_key']}")
        print(f"   Saved to:   {d['path']}")

    _output(out, args, human)
    return out


def cmd_anchor(args):
    """Score a submission and sign its anchor record."""
    from certguard.anchor import AnchorRecord, ScorerKey
    from certguard.models import Submission

    key = ScorerKey.load(args.key)
    submission = Submission.from_dict(_read_json(args.file))
    with _build_scorer(args) as scorer:
        result = scorer.score(submission, now=args.now)
    record = AnchorRecord.build(submission, result, scale=args.scale).sign(key)
    out = record.to_dict()

    if args.output:
        with open(args.output, "w") as f:
            json.dump(out, f, indent=2)

    def human(d):
        print(f"⚓ Anchor record for {d['certificate_id']}")
        print(f"   Anomaly:  {d['anomaly_score']}/{d['scale']}")
        print(f"   Analysis: {d['analysis_digest']}")
        print(f"   Signed:   {d['scorer_key'][:16]}...")
        if args.output:
            print(f"   Saved to: {args.output}")

    _output(out, args, human)
    return out


def cmd_verify_anchor(args):
    """Verify the signature on an anchor record."""
    from certguard.anchor import AnchorRecord

    record = AnchorRecord.from_dict(_read_json(args.file))
    out = {"certificate_id": record.certificate_id, "valid": record.verify()}

    def human(d):
        mark = "✅ VALID" if d["valid"] else "❌ INVALID"
        print(f"{mark}: {d['certificate_id']}")

    _output(out, args, human)
    if not out["valid"]:
        sys.exit(1)
    return out


def cmd_log(args):
    """Verify a decision log and list its entries."""
    from certguard.audit import DecisionLog

    if not os.path.exists(args.file):
        raise FileNotFoundError(args.file)
    log = DecisionLog.load(args.file)
    entries = log.query(subject=args.subject, event=args.event)
    out = {
        "path": args.file,
        "entries": len(log),
        "matches": [asdict(e) for e in entries],
    }
    if args.subject:
        out["latest_score"] = log.latest_score(args.subject)

    def human(d):
        print(f"✅ Chain intact: {d['entries']} entries in {d['path']}")
        for e in d["matches"]:
            print(f"   #{e['sequence']:<4} {e['recorded_at']}  {e['event']:<24} {e['subject']}")
        if d.get("latest_score"):
            s = d["latest_score"]
            print(f"   Latest score: {s['risk_level']} (anomaly {s['anomaly_score']:.3f})")

    _output(out, args, human)
    return out


# ─── Parser ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certguard",
        description="certguard — certificate fraud scoring CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log scoring details to stderr")
    parser.add_argument("--config", help="JSON file overriding scoring defaults")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("score", help="Score a submission")
    p.add_argument("file", help="Submission JSON file (- for stdin)")
    p.add_argument("-r", "--registry", help="Institution registry JSON file or URL")
    p.add_argument("--now", help="Evaluation time (ISO 8601), defaults to now")
    p.add_argument("--decision-log", help="Append decisions to this JSON Lines log")

    p = sub.add_parser("digest", help="Check the analysis digest of a stored result")
    p.add_argument("file", help="ScoreResult JSON file (- for stdin)")

    p = sub.add_parser("keygen", help="Create a scorer signing key")
    p.add_argument("-o", "--output", required=True, help="Key file to write")

    p = sub.add_parser("anchor", help="Score and emit a signed anchor record")
    p.add_argument("file", help="Submission JSON file (- for stdin)")
    p.add_argument("-k", "--key", required=True, help="Scorer key file")
    p.add_argument("-r", "--registry", help="Institution registry JSON file or URL")
    p.add_argument("--scale", type=int, default=255, choices=[255, 100],
                   help="Integer scale for the anomaly score")
    p.add_argument("--now", help="Evaluation time (ISO 8601), defaults to now")
    p.add_argument("-o", "--output", help="Save anchor record to file")
    p.add_argument("--decision-log", help="Append decisions to this JSON Lines log")

    p = sub.add_parser("verify-anchor", help="Verify a signed anchor record")
    p.add_argument("file", help="Anchor record JSON file (- for stdin)")

    p = sub.add_parser("log", help="Verify a decision log and list entries")
    p.add_argument("file", help="Decision log (JSON Lines)")
    p.add_argument("-s", "--subject", help="Only entries for this identity")
    p.add_argument("-e", "--event", choices=[e.value for e in DecisionEvent],
                   help="Only entries of this event type")

    return parser


def main(argv: Optional[list[str]] = None):
    """CLI entry point. Returns the command result for testing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "score": cmd_score,
        "digest": cmd_digest,
        "keygen": cmd_keygen,
        "anchor": cmd_anchor,
        "verify-anchor": cmd_verify_anchor,
        "log": cmd_log,
    }

    from certguard.errors import CertguardError

    try:
        return commands[args.command](args)
    except FileNotFoundError as e:
        print(f"❌ File not found: {e}", file=sys.stderr)
        sys.exit(1)
    except (CertguardError, KeyError, ValueError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
