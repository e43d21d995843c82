#!/usr/bin/env python3
"""branchsync CLI - propagate a change across many branches of one repository."""
from __future__ import annotations

import argparse
import json
import signal
import sys

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"branchsync requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

_LEVEL_TAGS = {"info": "INFO", "warn": "WARN", "error": "ERROR"}


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="branchsync",
        description="Propagate a merge, commit, stash or patch across many branches",
    )
    ap.add_argument("--repo", default=".", help="Repository root (default: current directory)")
    ap.add_argument("--json", dest="as_json", action="store_true", help="Print {ok, data|error} JSON")

    sub = ap.add_subparsers(dest="cmd")

    sub.add_parser("info", help="Show current branch, clean state and ahead/behind counts")
    sub.add_parser("branches", help="Fetch all remotes and list remote branches")

    p_check = sub.add_parser("check", help="Check which branch names exist on a remote")
    p_check.add_argument("names", nargs="+", help="Candidate branch names")

    sub.add_parser("stashes", help="List stash entries")

    p_sync = sub.add_parser("sync", help="Sync a change into every target branch")
    p_sync.add_argument(
        "--mode",
        choices=["branch", "commit", "stash", "patch"],
        default="branch",
        help="What to propagate (default: branch)",
    )
    p_sync.add_argument(
        "--target", "-t",
        dest="targets",
        action="append",
        required=True,
        help="Target branch (repeat for several; processed in order)",
    )
    p_sync.add_argument("--source", help="Source branch to merge (branch mode)")
    p_sync.add_argument("--commit", dest="commit_hash", help="Commit to cherry-pick (commit mode)")
    p_sync.add_argument("--stash", dest="stash_ref", help="Stash reference, e.g. stash@{0} (stash mode)")
    p_sync.add_argument("--patch", dest="patch_file", help="Patch file path (patch mode)")
    p_sync.add_argument("--message", "-m", help="Commit message for stash or patch mode")

    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")
    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    return ap


def _emit(envelope: dict) -> None:
    print(json.dumps(envelope, indent=2, ensure_ascii=False))


def _print_log_event(event) -> None:
    tag = _LEVEL_TAGS.get(event.level, event.level.upper())
    print(f"[{tag} {event.timestamp}] {event.message}", file=sys.stderr, flush=True)


def _sync_options_payload(args: argparse.Namespace) -> dict:
    payload = {
        "mode": args.mode,
        "target_branches": [t for t in args.targets if t and t.strip()],
        "source_branch": args.source,
        "commit_hash": args.commit_hash,
        "stash_ref": args.stash_ref,
        "patch_file": args.patch_file,
    }
    if args.mode == "stash":
        payload["stash_message"] = args.message
    elif args.mode == "patch":
        payload["patch_commit_message"] = args.message
    return payload


def _run_sync(service, args: argparse.Namespace) -> int:
    from .service import respond

    def _on_sigint(signum, frame):  # type: ignore[no-untyped-def]
        if service.cancel_sync():
            print("Cancellation requested; finishing the current git operation...", file=sys.stderr)

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        envelope = respond(
            service.start_sync,
            _sync_options_payload(args),
            on_log=_print_log_event,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.as_json:
        _emit(envelope)
    if not envelope["ok"]:
        if not args.as_json:
            print(f"❌ Sync not started: {envelope['error']}", file=sys.stderr)
        return EXIT_FAILED

    outcome = envelope["data"]
    if not args.as_json:
        for result in outcome["results"]:
            if result["success"]:
                print(f"✅ {result['branch']}")
            else:
                print(f"❌ {result['branch']}: {result['error']}")
        if outcome["cancelled"]:
            print("⚠️  Sync cancelled")
    if outcome["cancelled"]:
        return EXIT_CANCELLED
    if any(not r["success"] for r in outcome["results"]):
        return EXIT_FAILED
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    ap = _build_parser()
    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    if args.cmd == "config":
        from pathlib import Path
        from .config_loader import ConfigError, get_config_paths, load_config

        if args.config_cmd != "show":
            print("Usage: branchsync config show [--sources]", file=sys.stderr)
            sys.exit(1)
        project = Path(args.repo).resolve()
        if args.sources:
            for name, path in get_config_paths(project).items():
                marker = "✓" if path and path.exists() else "-"
                print(f"{marker} {name}: {path or '(not found)'}")
        try:
            cfg = load_config(project)
        except ConfigError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(cfg.model_dump(), indent=2))
        sys.exit(0)

    from pathlib import Path
    from .config_loader import ConfigError, get_config
    from .observability import apply_logging_config
    from .service import BranchSyncService, respond

    # logging settings must be in place before the first log line starts the logger
    try:
        config = get_config(Path(args.repo).expanduser())
    except ConfigError as e:
        if args.as_json:
            _emit({"ok": False, "error": str(e)})
        else:
            print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)
    apply_logging_config(config.logging)

    service = BranchSyncService(config)
    bound = respond(service.bind, args.repo)
    if not bound["ok"]:
        if args.as_json:
            _emit(bound)
        else:
            print(f"❌ {bound['error']}", file=sys.stderr)
        sys.exit(1)

    if args.cmd == "sync":
        sys.exit(_run_sync(service, args))

    if args.cmd == "info":
        envelope = respond(service.repository_summary)
    elif args.cmd == "branches":
        envelope = respond(service.list_remote_branches)
    elif args.cmd == "check":
        envelope = respond(service.check_remote_branches, args.names)
    elif args.cmd == "stashes":
        envelope = respond(service.list_stashes)
    else:
        ap.print_help()
        sys.exit(1)

    if args.as_json:
        _emit(envelope)
        missing = envelope["ok"] and args.cmd == "check" and envelope["data"]["not_exists"]
        sys.exit(0 if envelope["ok"] and not missing else 1)
    if not envelope["ok"]:
        print(f"❌ {envelope['error']}", file=sys.stderr)
        sys.exit(1)

    data = envelope["data"]
    if args.cmd == "info":
        print(f"Repository: {data['path']}")
        print(f"- Branch: {data['current_branch'] or '(detached)'}")
        print(f"- Clean: {'yes' if data['is_clean'] else 'no'}")
        print(f"- Ahead/behind: {data['ahead']}/{data['behind']}")
    elif args.cmd == "branches":
        for name in data["branches"]:
            marker = "*" if name == data["current"] else " "
            print(f"{marker} {name}")
    elif args.cmd == "check":
        for name in data["exists"]:
            print(f"✅ {name}")
        for name in data["not_exists"]:
            print(f"❌ {name} (not found on any remote)")
        if data["not_exists"]:
            sys.exit(1)
    elif args.cmd == "stashes":
        if not data:
            print("No stash entries.")
        for entry in data:
            print(f"{entry['reference']}\t{entry['hash'][:10]}\t{entry['message']}")
    sys.exit(0)


if __name__ == "__main__":
    main()
