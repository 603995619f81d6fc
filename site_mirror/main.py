"""CLI entry point."""

import argparse
import logging
import queue

from .config import load_config
from .db import Database
from .jobs import JobManager
from .logger import setup_logger
from .models import JobStatus, Strategy

TERMINAL = {JobStatus.COMPLETE.value, JobStatus.ERROR.value, JobStatus.PAUSED.value}


def run_mirror(manager: JobManager, url: str, strategy: str, depth: int):
    """Start a mirror and print progress until it finishes."""
    events = manager.channel.subscribe()
    job_id = manager.start_mirror(url, strategy, depth)
    print(f"Job {job_id}: mirroring {url} ({strategy}, depth {depth})")

    try:
        while True:
            try:
                event = events.get(timeout=1)
            except queue.Empty:
                if manager.get_status(job_id).status.value in TERMINAL:
                    break
                continue
            if event.job_id != job_id:
                continue
            current = f"  {event.current_path}" if event.current_path else ""
            print(f"  [{event.percent:>3}%] {event.step}{current}")
            if event.status in TERMINAL:
                break
    finally:
        manager.channel.unsubscribe(events)

    job = manager.wait(job_id)
    print()
    print(f"Status:    {job.status.value}")
    print(f"Output:    {job.output_dir}")
    print(f"Files:     {job.total_files} ({_format_bytes(job.total_size)})")
    print(f"Resources: {job.resources_fetched} fetched, {job.resources_failed} failed")
    if job.error_message:
        print(f"Error:     {job.error_message}")


def show_estimate(manager: JobManager, url: str, strategy: str, depth: int):
    est = manager.estimate(url, strategy, depth)
    print(f"Estimate for {url} ({strategy}, depth {depth}):")
    print(f"  Resources: {est.resource_count}")
    print(f"  Size:      {_format_bytes(est.estimated_bytes)}")
    print(f"  Time:      ~{est.estimated_seconds}s")


def show_jobs(manager: JobManager):
    """Display mirror jobs."""
    print("\n" + "=" * 90)
    print("  MIRROR JOBS")
    print("=" * 90)
    print(f"{'ID':<34} {'Status':<11} {'Progress':>8} {'Files':>7} {'Size':>11}  URL")
    print("-" * 90)
    for job in manager.list_jobs():
        print(f"{job.id:<34} {job.status.value:<11} {job.progress:>7}% {job.total_files:>7} "
              f"{_format_bytes(job.total_size):>11}  {job.url}")
    print()


def _format_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    elif n < 1024 ** 2:
        return f"{n / 1024:.1f} KB"
    elif n < 1024 ** 3:
        return f"{n / 1024 ** 2:.1f} MB"
    else:
        return f"{n / 1024 ** 3:.2f} GB"


def main():
    parser = argparse.ArgumentParser(description="Mirror a web page for offline browsing")
    parser.add_argument("url", nargs="?", help="Page to mirror")
    parser.add_argument("--strategy", type=str, default=Strategy.NO_SCRIPT_FETCH.value,
                        choices=[s.value for s in Strategy],
                        help="Fetch raw markup or render with a headless browser")
    parser.add_argument("--depth", type=int, default=0, choices=[0, 1],
                        help="1 also mirrors up to 10 same-domain linked pages")
    parser.add_argument("--estimate", action="store_true",
                        help="Only estimate size and duration")
    parser.add_argument("--list", action="store_true",
                        help="List mirror jobs")
    parser.add_argument("--config", type=str, default="config.yaml",
                        help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log every saved file")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logger(config.log_dir, logging.DEBUG if args.verbose else logging.INFO)
    db = Database(config.db_path)
    manager = JobManager(config, db)

    try:
        if args.list:
            show_jobs(manager)
            return
        if not args.url:
            parser.error("url is required unless --list is given")
        if args.estimate:
            show_estimate(manager, args.url, args.strategy, args.depth)
            return
        run_mirror(manager, args.url, args.strategy, args.depth)
    finally:
        manager.shutdown()


if __name__ == "__main__":
    main()
