"""CLI entrypoint for running and inspecting crawl jobs."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any

from .config import CrawlJobConfig, ScheduleConfig, load_config
from .engine import CrawlEngine, StartOutcome
from .errors import CrawlError
from .schedule import next_run_time
from .storage import FileStorage
from .types import CrawlRunHistory, DomainRestriction, ScheduleFrequency, parse_iso_utc


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="crawljob",
        description="Run polite, bounded crawl jobs and inspect their run history.",
    )
    parser.add_argument(
        "--output_dir",
        type=Path,
        default=Path("crawljob_output"),
        help="Root directory for jobs, run output, and logs.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Create (or reuse) a job and run it to completion.")
    run.add_argument("--config", type=Path, default=None, help="Path to JSON/YAML job config.")
    run.add_argument("--job_id", type=str, default=None, help="Re-run an existing job instead of creating one.")
    run.add_argument("--start_url", type=str, default=None)
    run.add_argument("--name", type=str, default=None)
    run.add_argument("--include", action="append", default=[], help="Include pattern (repeatable).")
    run.add_argument("--exclude", action="append", default=[], help="Exclude pattern (repeatable).")
    run.add_argument(
        "--domain_restriction",
        type=str,
        choices=[item.value for item in DomainRestriction],
        default=None,
    )
    run.add_argument("--content_type", action="append", default=[], help="Accepted MIME type (repeatable).")
    run.add_argument("--max_pages", type=int, default=None)
    run.add_argument("--max_depth", type=int, default=None)
    run.add_argument("--max_concurrent", type=int, default=None)
    run.add_argument("--max_per_origin", type=int, default=None)
    run.add_argument("--request_delay_ms", type=int, default=None)
    run.add_argument("--timeout_seconds", type=float, default=None)
    run.add_argument("--max_retries", type=int, default=None)
    run.add_argument("--user_agent", type=str, default=None)
    run.add_argument(
        "--respect_robots",
        dest="respect_robots",
        action="store_true",
        default=None,
        help="Respect robots.txt (default comes from config).",
    )
    run.add_argument(
        "--no_respect_robots",
        dest="respect_robots",
        action="store_false",
        help="Ignore robots.txt.",
    )
    run.add_argument(
        "--no_sitemaps",
        dest="use_sitemaps",
        action="store_false",
        default=None,
        help="Do not seed the frontier from sitemaps.",
    )
    run.add_argument(
        "--print_stats_json",
        action="store_true",
        help="Print the run history record as JSON after the run.",
    )

    status = subparsers.add_parser("status", help="Show a job's current state and counters.")
    status.add_argument("job_id", type=str)

    history = subparsers.add_parser("history", help="List a job's run history.")
    history.add_argument("job_id", type=str)

    delete = subparsers.add_parser("delete", help="Delete a job with its pages and run history.")
    delete.add_argument("job_id", type=str)

    subparsers.add_parser("recover", help="Mark jobs left active by a crashed process as failed.")

    next_run = subparsers.add_parser("next-run", help="Compute the next scheduled run time (UTC).")
    next_run.add_argument("--config", type=Path, default=None, help="Use the schedule from this job config.")
    next_run.add_argument(
        "--frequency",
        type=str,
        choices=[item.value for item in ScheduleFrequency],
        default=ScheduleFrequency.DAILY.value,
    )
    next_run.add_argument("--hour", type=int, default=0)
    next_run.add_argument("--day_of_week", type=int, default=None, help="0 = Sunday.")
    next_run.add_argument("--day_of_month", type=int, default=None)
    next_run.add_argument("--from_time", type=str, default=None, help="ISO timestamp; defaults to now.")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CrawlJobConfig:
    """Merge the optional config file with CLI overrides."""

    payload: dict[str, Any] = {}
    if args.config is not None:
        payload = load_config(args.config).to_dict()

    overrides = {
        "start_url": args.start_url,
        "name": args.name,
        "domain_restriction": args.domain_restriction,
        "max_pages": args.max_pages,
        "max_depth": args.max_depth,
        "max_concurrent": args.max_concurrent,
        "max_per_origin": args.max_per_origin,
        "request_delay_ms": args.request_delay_ms,
        "timeout_seconds": args.timeout_seconds,
        "max_retries": args.max_retries,
        "user_agent": args.user_agent,
        "respect_robots": args.respect_robots,
        "use_sitemaps": args.use_sitemaps,
    }
    payload.update({key: value for key, value in overrides.items() if value is not None})

    if args.include:
        payload["include_patterns"] = list(args.include)
    if args.exclude:
        payload["exclude_patterns"] = list(args.exclude)
    if args.content_type:
        payload["content_types"] = list(args.content_type)

    if not payload.get("start_url"):
        raise ValueError("No start URL provided. Use --config or --start_url.")

    return CrawlJobConfig.from_dict(payload)


def setup_logging(output_dir: Path, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "crawl.log"

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # Metadata fallbacks on noisy pages make trafilatura chatty.
    logging.getLogger("trafilatura").setLevel(logging.ERROR)
    logging.getLogger("trafilatura.core").setLevel(logging.ERROR)
    logging.getLogger("readability").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_summary(record: CrawlRunHistory, *, output_dir: Path, print_stats_json: bool) -> None:
    print("\n=== Crawl Run Complete ===")
    print(f"job_id: {record.job_id}")
    print(f"run_number: {record.run_number}")
    print(f"status: {record.status.value}")
    print(f"output_dir: {output_dir}")

    print("\n--- Run Stats ---")
    payload = record.to_json()
    for key in [
        "pages_discovered",
        "pages_crawled",
        "pages_successful",
        "pages_failed",
        "pages_skipped",
        "pages_new",
        "pages_changed",
        "pages_unchanged",
        "pages_removed",
        "total_words",
        "total_links",
        "duration_ms",
    ]:
        print(f"{key}: {payload[key]}")

    if print_stats_json:
        print("\n--- Full Run JSON ---")
        print(json.dumps(payload, indent=2, sort_keys=True))


def _cmd_run(engine: CrawlEngine, args: argparse.Namespace) -> int:
    if args.job_id:
        job_id = args.job_id
        engine.status(job_id)
    else:
        try:
            config = build_config(args)
        except (CrawlError, ValueError) as exc:
            logging.error("Failed to build config: %s", exc)
            return 2
        job_id = engine.create_job(config)

    outcome = engine.start(job_id)
    if outcome == StartOutcome.ALREADY_RUNNING:
        logging.warning("Job %s already has an active run", job_id)

    try:
        while not engine.wait(job_id, timeout=1.0):
            pass
    except KeyboardInterrupt:
        logging.error("Interrupted by user; cancelling job %s", job_id)
        engine.cancel(job_id)
        engine.wait(job_id)
        return 130

    record = engine.history(job_id)[-1]
    print_summary(record, output_dir=args.output_dir, print_stats_json=args.print_stats_json)
    return 0


def _cmd_next_run(args: argparse.Namespace) -> int:
    if args.config is not None:
        schedule = load_config(args.config).schedule
    else:
        schedule = ScheduleConfig(
            enabled=True,
            frequency=ScheduleFrequency(args.frequency),
            hour=args.hour,
            day_of_week=args.day_of_week,
            day_of_month=args.day_of_month,
        )

    from_time = parse_iso_utc(args.from_time) if args.from_time else None
    if args.from_time and from_time is None:
        logging.error("Invalid --from_time: %s", args.from_time)
        return 2

    print(next_run_time(schedule, from_time).isoformat())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.output_dir, verbose=args.verbose)

    if args.command == "next-run":
        return _cmd_next_run(args)

    engine = CrawlEngine(FileStorage(args.output_dir))

    try:
        if args.command == "run":
            return _cmd_run(engine, args)

        if args.command == "status":
            status = engine.status(args.job_id).to_json(include_secrets=False)
            print(json.dumps(status, indent=2, sort_keys=True))
            return 0

        if args.command == "history":
            rows = [record.to_json() for record in engine.history(args.job_id)]
            print(json.dumps(rows, indent=2, sort_keys=True))
            return 0

        if args.command == "delete":
            engine.delete_job(args.job_id)
            return 0

        if args.command == "recover":
            recovered = engine.recover_interrupted()
            logging.info("Recovered %d interrupted job(s)", len(recovered))
            for job_id in recovered:
                print(job_id)
            return 0
    except CrawlError as exc:
        logging.error("%s", exc)
        return 1
    except Exception:
        logging.exception("Command %s failed", args.command)
        return 1
    finally:
        engine.shutdown()

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
