import argparse
import asyncio
import logging
from datetime import datetime

from services.harvester import HarvestReport, harvester
from services.resolver import InvalidQueryTime, parse_query_time
from services.upstream import gfs_upstream


async def run_once(start: datetime | None = None) -> HarvestReport:
    try:
        return await harvester.run(start)
    finally:
        await gfs_upstream.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a single GFS wind harvest and print what happened.")
    parser.add_argument("--start", help="ISO-8601 instant to start walking back from (default: now)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    start = None
    if args.start:
        try:
            start = parse_query_time(args.start)
        except InvalidQueryTime:
            parser.error(f"invalid --start value: {args.start}")

    report = asyncio.run(run_once(start))
    print()
    print("Start interval:", report.start_key)
    print("Status:", report.status)
    print("Committed:", ", ".join(report.committed) or "-")
    print()
    print("Attempts:")
    for attempt in report.attempts:
        suffix = f" ({attempt.status_code})" if attempt.status_code is not None else ""
        print(f"  {attempt.key}: {attempt.outcome}{suffix}")
    return 0 if report.status != "conversion_failed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
