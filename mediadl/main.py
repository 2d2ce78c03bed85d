import sys
import json
import time
import argparse

import colorama
from colorama import Fore, Style

from mediadl.bootstrap import create_container, configure_logging, shutdown_container, start_container
from mediadl.app.commands import (
    FetchMedia, ListHistory, CheckUrl, RedownloadArtifact, DeleteArtifact, RunSweep,
    StorageStats, ListUsers, SetStorageLimit, SetRole,
)
from mediadl.app.quota import format_bytes
from mediadl.core.errors import MediaDLError

SERVE_POLL_SECONDS = 1.0


def truncate_middle(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    keep = (width - 3) // 2
    return f"{text[:keep]}...{text[-(width - 3 - keep):]}"


def _ok(message: str):
    print(f"{Fore.GREEN}{message}{Style.RESET_ALL}")


def _fail(message: str):
    print(f"{Fore.RED}{message}{Style.RESET_ALL}", file=sys.stderr)


def _print_response(response, as_json: bool):
    if as_json:
        print(json.dumps(response.to_dict(), indent=2, ensure_ascii=False))
        return

    source = f"{Fore.CYAN}(cached){Style.RESET_ALL}" if response.from_cache else f"via {response.strategy}"
    _ok(f"{response.kind.value}: {response.title} {source}")
    print(f"  quality   {response.resolved_quality} (requested {response.requested_quality})")
    print(f"  size      {format_bytes(response.size_bytes)}")
    if response.download_ref:
        print(f"  file      {response.download_ref}")
    for alt in response.alternate_files:
        print(f"  alt       {alt['label']}: {alt['downloadRef']}")
    if response.instructions:
        print()
        print(f"{Fore.YELLOW}{response.instructions}{Style.RESET_ALL}")


def _print_attempts(attempts):
    for a in attempts:
        colour = Fore.GREEN if a.outcome.value == "success" else Fore.YELLOW
        print(f"  {colour}{a.strategy:<28}{Style.RESET_ALL} {a.outcome.value:<15} {a.elapsed:6.2f}s  {a.message}")


def _print_stats(stats: dict):
    for key, value in stats.items():
        if key in ("totalSize", "maxStorageSize"):
            value = format_bytes(value)
        elif key == "usagePercentage":
            value = f"{value:.1f}%"
        print(f"  {key:<18} {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="mediadl - fetch media from social and file-hosting sites")
    parser.add_argument("-u", "--user", default="anonymous", help="Identity the request is made for")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch media from a URL")
    fetch_parser.add_argument("url", help="Source URL")
    fetch_parser.add_argument("-q", "--quality", default="default", help="default, highest or e.g. 720p")
    fetch_parser.add_argument("--password", help="File password (Fshare)")
    fetch_parser.add_argument("--email", help="Recipient email for manual processing")
    fetch_parser.add_argument("--json", action="store_true", help="Print the response as JSON")

    history_parser = subparsers.add_parser("history", help="List stored downloads")
    history_parser.add_argument("-n", "--limit", type=int, default=50)

    check_parser = subparsers.add_parser("check", help="Check whether a URL is already stored")
    check_parser.add_argument("url")

    get_parser = subparsers.add_parser("get", help="Show a stored download again")
    get_parser.add_argument("id")

    rm_parser = subparsers.add_parser("rm", help="Delete stored downloads")
    rm_parser.add_argument("ids", nargs="+")

    subparsers.add_parser("sweep", help="Delete files older than the retention window")
    subparsers.add_parser("serve", help="Run the retention sweeper until interrupted")

    stats_parser = subparsers.add_parser("stats", help="Storage statistics")
    stats_parser.add_argument("--all", action="store_true", help="Global view")

    subparsers.add_parser("users", help="Per-identity storage overview")

    limit_parser = subparsers.add_parser("limit", help="Set an identity's storage limit")
    limit_parser.add_argument("identity")
    limit_parser.add_argument("bytes", type=int, help="Limit in bytes, -1 for unlimited")

    role_parser = subparsers.add_parser("role", help="Set an identity's role")
    role_parser.add_argument("identity")
    role_parser.add_argument("role", choices=["user", "admin", "super_admin"])

    return parser


def main(argv=None):
    colorama.init()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    container = create_container()
    settings = container["settings"]
    configure_logging("DEBUG" if args.verbose else settings.log_level)
    bus = container["bus"]

    try:
        if args.command == "fetch":
            outcome = bus.handle(FetchMedia(
                url=args.url, quality=args.quality, password=args.password,
                target_email=args.email, identity=args.user, user_agent="mediadl-cli",
            ))
            if outcome.ok:
                _print_response(outcome.response, args.json)
                if args.verbose:
                    _print_attempts(outcome.response.attempts)
                return 0
            if args.json:
                print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
            else:
                _fail(f"{outcome.error_code}: {outcome.message}")
                _print_attempts(outcome.attempts)
            return 1

        elif args.command == "history":
            artifacts = bus.handle(ListHistory(identity=args.user, limit=args.limit))
            if not artifacts:
                print("No downloads.")
                return 0
            print(f"{'ID':<34} {'Platform':<10} {'Quality':<15} {'Size':>10}  Title")
            print("_" * 100)
            for a in artifacts:
                print(f"{a.id:<34} {a.platform.value:<10} {a.resolved_quality:<15} "
                      f"{format_bytes(a.size_bytes):>10}  {truncate_middle(a.title, 40)}")

        elif args.command == "check":
            artifact = bus.handle(CheckUrl(url=args.url))
            if artifact is None:
                print("Not stored.")
            else:
                _ok(f"Stored as {artifact.id}: {artifact.title}")

        elif args.command == "get":
            _print_response(bus.handle(RedownloadArtifact(id=args.id, identity=args.user)), False)

        elif args.command == "rm":
            results = bus.handle(DeleteArtifact(ids=args.ids, identity=args.user))
            for r in results:
                if r["success"]:
                    _ok(f"Deleted {r['id']}")
                else:
                    _fail(r["message"])
            deleted = sum(1 for r in results if r["success"])
            print(f"{deleted} downloads deleted.")

        elif args.command == "sweep":
            report = bus.handle(RunSweep())
            _ok(f"Swept {report.deleted_count} files, freed {format_bytes(report.freed_bytes)}.")

        elif args.command == "serve":
            start_container(container)
            _ok(f"Sweeping every {settings.retention.sweep_interval}, press Ctrl+C to stop.")
            try:
                while True:
                    time.sleep(SERVE_POLL_SECONDS)
            except KeyboardInterrupt:
                _ok("Stopped.")

        elif args.command == "stats":
            _print_stats(bus.handle(StorageStats(identity=None if args.all else args.user)))

        elif args.command == "users":
            rows = bus.handle(ListUsers())
            if not rows:
                print("No users.")
            for row in rows:
                print(f"{row['identity']:<24} {row['role']:<12} {row['currentUsageFormatted']:>12} / "
                      f"{row['storageLimitFormatted']:<12} {row['activeDownloads']} active")

        elif args.command == "limit":
            record = bus.handle(SetStorageLimit(identity=args.identity, limit_bytes=args.bytes))
            _ok(f"{record.identity}: limit {format_bytes(record.storage_limit_bytes)}")

        elif args.command == "role":
            record = bus.handle(SetRole(identity=args.identity, role=args.role))
            _ok(f"{record.identity}: role {record.role.value}, limit {format_bytes(record.storage_limit_bytes)}")

    except MediaDLError as e:
        _fail(str(e))
        return 1
    except ValueError as e:
        _fail(str(e))
        return 2
    except KeyboardInterrupt:
        return 130
    finally:
        shutdown_container(container)

    return 0


if __name__ == "__main__":
    sys.exit(main())
