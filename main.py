import argparse
import asyncio
import json
import sys
import pandas as pd
from loguru import logger

from storepulse.config import LOG_LEVEL
from storepulse.models import CheckKind, FinalReport, PipelineOptions
from storepulse.pipeline import invoke_pipeline
from storepulse.scheduler import run_scheduler


def write_results_csv(report: FinalReport, output_path: str):
    """Flatten the report's per-unit results into a CSV file."""
    df = pd.json_normalize(report.results)
    df.to_csv(output_path, index=False)
    logger.info(f"Saved {len(df)} results to {output_path}")


async def run_check(args) -> FinalReport:
    options = PipelineOptions(
        source="cli",
        explicit_unit_ids=args.ids or None,
        test_mode=args.test,
        return_full_data=args.full,
        batch_size=args.batch_size,
    )
    kind = CheckKind.SERVICEABILITY if args.mode == "sla" else CheckKind.AVAILABILITY
    return await invoke_pipeline(kind, options)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Instamart store SLA and item availability checks")
    parser.add_argument("mode", choices=["sla", "availability", "schedule"])
    parser.add_argument("--ids", nargs="*", help="Location names (sla) or item ids (availability) to check")
    parser.add_argument("--test", action="store_true", help="Test mode: do not save results")
    parser.add_argument("--full", action="store_true", help="Return full per-unit data")
    parser.add_argument("--batch-size", type=int, default=None, help="Units probed concurrently per batch")
    parser.add_argument("--output", help="Write results to this CSV file")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    # Initialize logs
    logger.remove()  # Remove default handler
    logger.add(sys.stderr, level=LOG_LEVEL, format="<green>{time:HH:mm:ss}</green> | <level>{message}</level>")

    if args.mode == "schedule":
        asyncio.run(run_scheduler())
        return 0

    report = asyncio.run(run_check(args))
    print(json.dumps(report.to_dict(), indent=2, default=str))
    if args.output and report.success:
        write_results_csv(report, args.output)
    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
