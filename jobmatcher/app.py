import argparse
import asyncio
import json
from pathlib import Path
from typing import List

from . import __version__
from .config import SETTING_KEYS, ensure_valid, resolve_matcher_settings, validate_matcher_config
from .engine import MatchEngine
from .env import database_path, load_env, provider_settings
from .errors import MatchError, SessionError, http_status_for
from .models import CandidateProfile, EducationEntry, ExperienceEntry, SkillEntry
from .provider import create_provider
from .storage import MatchStore
from .tracking import SessionTracker


def parse_job_ids(raw: str) -> List[int]:
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise SystemExit(f"Invalid job id: {part}")
        ids.append(int(part))
    return ids


def _store(args: argparse.Namespace) -> MatchStore:
    return MatchStore(Path(args.db) if args.db else database_path())


def _engine(args: argparse.Namespace) -> MatchEngine:
    settings = provider_settings()
    return MatchEngine(_store(args), create_provider(settings), provider_name=settings["provider"])


def _print_progress(progress) -> None:
    if progress.phase == "queued":
        print(f"  queued at position {progress.queue_position}")
        return
    print(
        f"  [{progress.phase}] {progress.completed}/{progress.total} "
        f"({progress.succeeded} ok, {progress.failed} failed)"
    )


def _print_session(session: dict) -> None:
    print(f"Session: {session['id']}")
    print(f"  Status: {session['status']}")
    print(f"  Trigger: {session['trigger_source']}")
    print(
        f"  Jobs: {session['jobs_completed']}/{session['jobs_total']} completed, "
        f"{session['jobs_succeeded']} succeeded, {session['jobs_failed']} failed"
    )
    print(f"  Started: {session['started_at']}")
    print(f"  Completed: {session['completed_at'] or '-'}")


def cmd_init_db(args: argparse.Namespace) -> None:
    store = _store(args)
    print(f"Database ready: {store.db_path}")


def cmd_add_job(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        postings = json.load(f)
    if isinstance(postings, dict):
        postings = [postings]

    store = _store(args)
    for posting in postings:
        if not posting.get("title"):
            print(f"Skipping posting without title: {posting}")
            continue
        job_id = store.add_job(
            title=posting["title"],
            description=posting.get("description"),
            company_id=posting.get("company_id"),
            url=posting.get("url"),
        )
        print(f"Added job {job_id}: {posting['title']}")


def cmd_import_profile(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        data = json.load(f)

    profile = CandidateProfile(
        summary=data.get("summary"),
        skills=[SkillEntry(**s) for s in data.get("skills", [])],
        experience=[ExperienceEntry(**e) for e in data.get("experience", [])],
        education=[EducationEntry(**e) for e in data.get("education", [])],
    )
    _store(args).save_profile(profile, name=data.get("name"))
    print(f"Profile imported: {len(profile.skills)} skills, {len(profile.experience)} positions")


def cmd_match(args: argparse.Namespace) -> None:
    job_ids = parse_job_ids(args.jobs)
    if not job_ids:
        raise SystemExit("No job ids given")

    engine = _engine(args)
    try:
        result = asyncio.run(engine.match_with_tracking(
            job_ids,
            trigger_source=args.trigger,
            company_id=args.company,
            on_progress=_print_progress,
        ))
    except (MatchError, SessionError) as e:
        raise SystemExit(f"Match failed ({http_status_for(e)}): {e}")
    print(json.dumps(result.to_dict(), indent=2))


def cmd_match_unmatched(args: argparse.Namespace) -> None:
    engine = _engine(args)
    result = asyncio.run(engine.match_unmatched_jobs(on_progress=_print_progress))
    if result.total == 0:
        print("No unmatched jobs.")
        return
    print(json.dumps(result.to_dict(), indent=2))


def cmd_status(args: argparse.Namespace) -> None:
    tracker = SessionTracker(_store(args))
    session = tracker.get_match_session_status(args.session)
    if session is None:
        raise SystemExit(f"Session not found: {args.session}")
    _print_session(session)

    if args.logs:
        print("\nLogs:")
        for log in tracker.get_match_logs(args.session):
            detail = f"score {log['score']}" if log["status"] == "succeeded" else log["error_type"]
            print(
                f"  job {log['job_id']}: {log['status']} ({detail}), "
                f"attempts {log['attempt_count']}, {log['duration_ms']}ms"
            )


def cmd_stop(args: argparse.Namespace) -> None:
    if SessionTracker(_store(args)).stop_match_session(args.session):
        print(f"Stopped session {args.session}")
    else:
        print(f"Session {args.session} is not active")


def cmd_history(args: argparse.Namespace) -> None:
    sessions = SessionTracker(_store(args)).list_match_sessions(limit=args.limit)
    if not sessions:
        print("No match sessions.")
        return
    print(f"Found {len(sessions)} sessions:\n")
    for session in sessions:
        _print_session(session)
        print()


def cmd_config(args: argparse.Namespace) -> None:
    store = _store(args)
    for assignment in args.set or []:
        key, sep, value = assignment.partition("=")
        if not sep or key not in SETTING_KEYS:
            raise SystemExit(f"Unknown setting: {assignment} (known: {', '.join(SETTING_KEYS)})")
        store.set_setting(key, value)

    values = resolve_matcher_settings(store.get_settings(list(SETTING_KEYS)), provider=provider_settings()["provider"])
    errors = validate_matcher_config(values)
    if errors:
        print("Invalid configuration:")
        for error in errors:
            print(f"  - {error}")
        return
    print(json.dumps(ensure_valid(values).to_dict(), indent=2))


def main():
    # Load .env if present (JOBMATCHER_API_KEY, JOBMATCHER_PROVIDER_URL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="jobmatcher", description="Job Matcher: AI match sessions for stored jobs")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="Path to SQLite database (default: JOBMATCHER_DB or data/jobmatcher.db)")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create the database tables")
    ini.set_defaults(func=cmd_init_db)

    add = subparsers.add_parser("add-job", help="Add job postings from a JSON file (object or list)")
    add.add_argument("--input", required=True, help="Path to posting JSON input")
    add.set_defaults(func=cmd_add_job)

    prof = subparsers.add_parser("import-profile", help="Replace the candidate profile from a JSON file")
    prof.add_argument("--input", required=True, help="Path to profile JSON input")
    prof.set_defaults(func=cmd_import_profile)

    mat = subparsers.add_parser("match", help="Match jobs in a tracked session")
    mat.add_argument("--jobs", required=True, help="Comma-separated job ids. Example: 1,2,3")
    mat.add_argument("--trigger", default="manual", choices=["manual", "scheduler", "company_refresh"], help="Trigger source recorded on the session")
    mat.add_argument("--company", type=int, help="Optional company id recorded on the session")
    mat.set_defaults(func=cmd_match)

    unm = subparsers.add_parser("match-unmatched", help="Match every job without a score")
    unm.set_defaults(func=cmd_match_unmatched)

    sts = subparsers.add_parser("status", help="Show a match session")
    sts.add_argument("--session", required=True, help="Session id")
    sts.add_argument("--logs", action="store_true", help="Also list per-job log entries")
    sts.set_defaults(func=cmd_status)

    stp = subparsers.add_parser("stop", help="Stop an active match session")
    stp.add_argument("--session", required=True, help="Session id")
    stp.set_defaults(func=cmd_stop)

    his = subparsers.add_parser("history", help="List recent match sessions")
    his.add_argument("--limit", type=int, default=20, help="Number of sessions to show (default 20)")
    his.set_defaults(func=cmd_history)

    cfg = subparsers.add_parser("config", help="Show (and optionally change) matcher settings")
    cfg.add_argument("--set", action="append", help="Setting assignment, e.g. matcher_batch_size=3 (repeatable)")
    cfg.set_defaults(func=cmd_config)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
