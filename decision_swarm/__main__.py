"""CLI entry point: python -m decision_swarm <request>"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from decision_swarm.config import Settings, get_settings
from decision_swarm.contracts import FeedbackRecord, RunMode
from decision_swarm.streaming import StreamDisplay


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="decision-swarm",
        description="Multi-role business decision pipeline with verification and constraints",
    )
    parser.add_argument(
        "request",
        type=str,
        nargs="?",
        default=None,
        help="The decision request to analyze",
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in RunMode],
        default=None,
        help="Force the analysis mode (default: detected from the request)",
    )
    parser.add_argument(
        "--budget",
        type=float,
        default=None,
        help="Maximum investment in yuan (default: MAX_INVESTMENT)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output file path for the report (default: stdout + output/<timestamp>.md)",
    )
    parser.add_argument(
        "--no-stream",
        action="store_true",
        default=False,
        help="Disable progress output",
    )
    parser.add_argument(
        "--no-search",
        action="store_true",
        default=False,
        help="Skip web search even when backends are configured",
    )
    parser.add_argument(
        "--no-learning",
        action="store_true",
        default=False,
        help="Do not apply learned rules to prompts",
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        default=False,
        help="Disable the per-run call log file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Show node-level details while streaming",
    )
    # Standalone operations
    parser.add_argument(
        "--list-sessions",
        action="store_true",
        default=False,
        help="List saved sessions and exit",
    )
    parser.add_argument(
        "--show-session",
        type=str,
        default=None,
        metavar="ID",
        help="Print the report of a saved session and exit",
    )
    parser.add_argument(
        "--delete-session",
        type=str,
        default=None,
        metavar="ID",
        help="Delete a saved session and exit",
    )
    parser.add_argument(
        "--feedback-report",
        action="store_true",
        default=False,
        help="Print accuracy statistics learned from feedback and exit",
    )
    parser.add_argument(
        "--feedback",
        type=str,
        default=None,
        metavar="ID",
        help="Submit feedback for a session (requires --rating)",
    )
    parser.add_argument("--rating", type=int, choices=range(1, 6), default=None)
    parser.add_argument("--adopted", action="store_true", default=False)
    parser.add_argument("--correction", type=str, default="")
    parser.add_argument("--comment", type=str, default="")
    parser.add_argument(
        "--helpful",
        type=str,
        nargs="*",
        default=[],
        metavar="ROLE",
        help="Role ids whose output was helpful (others in the session count as not helpful)",
    )
    args = parser.parse_args(argv)

    standalone = (
        args.list_sessions
        or args.show_session
        or args.delete_session
        or args.feedback_report
        or args.feedback
    )
    if not args.request and not standalone:
        parser.error(
            "a request is required (or use --list-sessions / --show-session ID / "
            "--delete-session ID / --feedback-report / --feedback ID --rating N)"
        )
    if args.feedback and args.rating is None:
        parser.error("--feedback requires --rating 1-5")

    return args


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent


def _session_store(settings: Settings):
    from decision_swarm.storage.kv import JsonFileStore
    from decision_swarm.storage.sessions import SessionStore

    return SessionStore(JsonFileStore(_project_root() / settings.data_dir / "sessions"))


def _learning_store(settings: Settings):
    from decision_swarm.learning.repository import JsonFileLearningRepository
    from decision_swarm.learning.store import LearningStore

    store = LearningStore(
        JsonFileLearningRepository(_project_root() / settings.data_dir),
        max_rules=settings.max_rules,
        decay_per_month=settings.rule_decay_per_month,
    )
    store.open()
    return store


def _list_sessions(settings: Settings) -> None:
    sessions = _session_store(settings).list()
    if not sessions:
        print("No sessions found.", file=sys.stderr)
        return
    for s in sessions:
        print(f"  {s['id']}  [{s['status']}]  {s['mode']}  {s['roles']} roles  {s['created_at']}")
        print(f"    Q: {s['query']}")


def _show_session(settings: Settings, session_id: str) -> None:
    session = _session_store(settings).get(session_id)
    if session is None:
        print(f"ERROR: No session '{session_id}'", file=sys.stderr)
        sys.exit(1)
    report = session.get("report") or json.dumps(session, indent=2, ensure_ascii=False)
    sys.stdout.buffer.write(report.encode("utf-8"))
    sys.stdout.buffer.write(b"\n")


def _delete_session(settings: Settings, session_id: str) -> None:
    if _session_store(settings).delete(session_id):
        print(f"Deleted session {session_id}", file=sys.stderr)
    else:
        print(f"ERROR: No session '{session_id}'", file=sys.stderr)
        sys.exit(1)


def _submit_feedback(settings: Settings, args: argparse.Namespace) -> None:
    session = _session_store(settings).get(args.feedback) or {}
    if not session:
        print(f"WARNING: session '{args.feedback}' not found; recording feedback anyway", file=sys.stderr)

    helpful = set(args.helpful)
    roles = {r["role_id"] for r in session.get("results", {}).values() if r.get("success")}
    roles |= helpful

    record = FeedbackRecord(
        decision_id=args.feedback,
        rating=args.rating,
        adopted=args.adopted,
        correction=args.correction,
        role_helpful={role: role in helpful for role in sorted(roles)},
        comment=args.comment,
        query=session.get("input", ""),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )

    learning = _learning_store(settings)
    rules = learning.record_feedback(record)
    learning.flush()
    print(
        f"Feedback recorded for {args.feedback}: rating {args.rating}, "
        f"{len(rules)} rule(s) learned or reinforced",
        file=sys.stderr,
    )


def _feedback_report(settings: Settings) -> None:
    report = _learning_store(settings).report()
    print(json.dumps(report, indent=2, ensure_ascii=False))


def _output_report(report: str, *, output_path_override: str | None, request: str) -> None:
    """Print report to stdout and save to file."""
    sys.stdout.buffer.write(report.encode("utf-8"))
    sys.stdout.buffer.write(b"\n")
    sys.stdout.buffer.flush()

    output_dir = _project_root() / "output"
    if output_path_override:
        output_path = Path(output_path_override)
    else:
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        safe_q = "".join(c if c.isalnum() or c in "-_ " else "" for c in request[:30])
        safe_q = safe_q.strip().replace(" ", "-").lower()
        output_path = output_dir / f"{ts}-{safe_q}.md"

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(report, encoding="utf-8")
    print(f"\nReport saved to: {output_path}", file=sys.stderr)


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    if args.budget is not None:
        settings = dataclasses.replace(settings, max_investment=args.budget)

    # --- Standalone operations (no provider calls) ---

    if args.list_sessions:
        _list_sessions(settings)
        return

    if args.show_session:
        _show_session(settings, args.show_session)
        return

    if args.delete_session:
        _delete_session(settings, args.delete_session)
        return

    if args.feedback:
        _submit_feedback(settings, args)
        return

    if args.feedback_report:
        _feedback_report(settings)
        return

    # --- New analysis run ---

    errors = settings.validate()
    if errors:
        for err in errors:
            print(f"ERROR: {err}", file=sys.stderr)
        sys.exit(1)

    if not args.no_search:
        for warning in settings.warnings():
            print(f"WARNING: {warning}", file=sys.stderr)

    from decision_swarm.backends.aggregator import build_aggregator
    from decision_swarm.constraints.enforcer import ConstraintEnforcer, CorrectionPolicy
    from decision_swarm.constraints.rules import Limits
    from decision_swarm.event_log.writer import CallLog
    from decision_swarm.graph.orchestrator import RoleOrchestrator
    from decision_swarm.graph.topics import CyclePolicy
    from decision_swarm.profile import load_profile
    from decision_swarm.providers.caller import ProviderFallbackCaller
    from decision_swarm.reporting.renderer import render_report

    profile = load_profile(settings.profile_path)
    run_id = datetime.now(timezone.utc).strftime("decision-%Y%m%d-%H%M%S")
    call_log = CallLog() if args.no_log else CallLog(_project_root() / settings.run_log_dir, run_id)
    caller = ProviderFallbackCaller(
        api_keys=settings.provider_keys(),
        call_log=call_log,
        timeout=settings.provider_timeout,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    learning = None if args.no_learning else _learning_store(settings)
    orchestrator = RoleOrchestrator(
        settings,
        caller=caller,
        enforcer=ConstraintEnforcer(
            Limits.from_settings(settings, profile),
            policy=CorrectionPolicy(settings.correction_policy),
        ),
        aggregator=None if args.no_search else build_aggregator(settings),
        learning=learning,
        profile=profile,
        cycle_policy=CyclePolicy(settings.cycle_policy),
    )

    print(f"Analyzing: {args.request}", file=sys.stderr)
    print(f"Providers: {', '.join(settings.provider_keys())}", file=sys.stderr)
    print("---", file=sys.stderr)

    display = StreamDisplay(verbose=args.verbose)
    try:
        result = await orchestrator.run(
            args.request,
            mode=args.mode,
            on_progress=None if args.no_stream else display.handle_progress,
            on_update=None if args.no_stream else display.handle_update,
        )
    finally:
        await caller.aclose()

    if not result.report:
        result.report = render_report(result)

    _output_report(result.report, output_path_override=args.output, request=args.request)

    if _session_store(settings).save(result.to_dict()):
        print(f"Session: {result.id}", file=sys.stderr)
    if learning is not None:
        learning.flush()
    if call_log.path is not None:
        print(f"Call log: {call_log.path}", file=sys.stderr)

    meta = result.metadata
    print(
        f"{result.status.value}: {meta['model_calls']} call(s) | "
        f"{meta['fallback_count']} fallback(s) | {len(meta['corrections'])} correction(s) | "
        f"{len(meta['blocking_violations'])} blocked",
        file=sys.stderr,
    )
    if result.error:
        sys.exit(1)


def main() -> None:
    args = parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
