"""
Ingestion command line.

    python -m src.codeleads.ingestion.cli preview violations.csv
    python -m src.codeleads.ingestion.cli split violations.csv --output data/splits --fallback-state TX
    python -m src.codeleads.ingestion.cli ingest violations.csv --owner ops --process
"""
import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional

from src.codeleads.exceptions import CodeLeadsError
from src.codeleads.ingestion.csv_splitter import CsvSplitter
from src.codeleads.ingestion.location_detector import LocationDetector
from src.codeleads.ingestion.orchestrator import BatchJobOrchestrator
from src.codeleads.storage import LocalByteStore, sanitize_filename
from src.codeleads.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def preview(path: Path) -> dict:
    result = LocationDetector().detect(path.read_text(encoding="utf-8-sig"))
    return {
        "total_rows": result.total_rows,
        "city_column": result.city_column,
        "state_column": result.state_column,
        "undetected_rows": len(result.undetected_rows),
        "locations": [c.model_dump() for c in result.candidates],
    }


def split(path: Path, output: Path, fallback_city: Optional[str], fallback_state: Optional[str]) -> dict:
    result = CsvSplitter().split(path.read_text(encoding="utf-8-sig"), fallback_city, fallback_state)
    output.mkdir(parents=True, exist_ok=True)
    written = {}
    for key in result.groups:
        city, state = result.split_key(key)
        target = output / sanitize_filename(f"{city}_{state}_{path.name}")
        target.write_text(result.to_csv(key), encoding="utf-8")
        written[key] = str(target)
    logger.info("split_files_written", output=str(output), files=len(written))
    return {"total_rows": result.total_rows, "skipped_rows": result.skipped_rows, "files": written}


def ingest(path: Path, owner: str, fallback_city: Optional[str], fallback_state: Optional[str],
           fallback_county: Optional[str], process: bool) -> dict:
    orchestrator = BatchJobOrchestrator(store=LocalByteStore())
    result = asyncio.run(orchestrator.submit(
        path.read_text(encoding="utf-8-sig"),
        owner_id=owner,
        filename=path.name,
        fallback_city=fallback_city,
        fallback_state=fallback_state,
        fallback_county=fallback_county,
        process=process,
    ))
    return {
        "upload_id": result.upload_id,
        "total_rows": result.total_rows,
        "skipped_rows": result.skipped_rows,
        "job_ids": result.job_ids,
        "failed": {c.key: c.error for c in result.failed},
    }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Code violation CSV ingestion")
    commands = parser.add_subparsers(dest="command", required=True)

    preview_cmd = commands.add_parser("preview", help="Show the locations detected in a CSV")
    preview_cmd.add_argument("csv", type=Path)

    for name, help_text in (("split", "Write one CSV per location"), ("ingest", "Create ingestion jobs")):
        cmd = commands.add_parser(name, help=help_text)
        cmd.add_argument("csv", type=Path)
        cmd.add_argument("--fallback-city", default=None, help="City for rows without one")
        cmd.add_argument("--fallback-state", default=None, help="2-letter state for rows without one")
        if name == "split":
            cmd.add_argument("--output", type=Path, default=Path("data/splits"), help="Directory for split files")
        else:
            cmd.add_argument("--owner", required=True, help="Owner id recorded on the jobs")
            cmd.add_argument("--fallback-county", default=None)
            cmd.add_argument("--process", action="store_true", help="Process jobs after creating them")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    try:
        if args.command == "preview":
            output = preview(args.csv)
        elif args.command == "split":
            output = split(args.csv, args.output, args.fallback_city, args.fallback_state)
        else:
            output = ingest(args.csv, args.owner, args.fallback_city, args.fallback_state,
                            args.fallback_county, args.process)
    except CodeLeadsError as e:
        logger.error("ingestion_cli_failed", command=args.command, error=e.message)
        return 1

    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
