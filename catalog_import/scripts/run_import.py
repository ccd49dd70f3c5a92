#!/usr/bin/env python3
"""
Catalog Import Script
Runs one CSV import job synchronously and prints its stats and artifacts.

Usage:
    python -m catalog_import.scripts.run_import data/catalog.csv
    python -m catalog_import.scripts.run_import data/catalog.csv --mode execute --upsert sku

Dry run is the default; nothing is written to the catalog without --mode execute.
"""

import argparse
import hashlib
import json
import logging
import sys
from pathlib import Path

from catalog_import.config.settings import get_settings
from catalog_import.ingestion.controller import JobController
from catalog_import.ingestion.errors import CatalogImportError
from catalog_import.ingestion.factory import build_artifact_store, build_job_controller
from catalog_import.models.job import JobStatus, SourceFileRef
from catalog_import.models.options import parse_options
from catalog_import.stores.jobs import InMemoryJobStore
from catalog_import.stores.memory import InMemoryCatalogStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import catalog products from a CSV file")
    parser.add_argument("csv_path", type=str, help="Path to the CSV file")
    parser.add_argument(
        "--mode",
        choices=["dry_run", "execute"],
        default="dry_run",
        help="dry_run reports what would change (default: dry_run)",
    )
    parser.add_argument(
        "--upsert",
        choices=["off", "handle", "sku", "external_id"],
        default="off",
        help="Key used to match existing products (default: off, always create)",
    )
    parser.add_argument(
        "--image-strategy",
        choices=["merge", "replace"],
        default="replace",
        help="How row images combine with existing ones (default: replace)",
    )
    parser.add_argument(
        "--prune-missing-variants",
        action="store_true",
        help="Delete catalog variants missing from the row (needs --confirm-prune)",
    )
    parser.add_argument(
        "--confirm-prune",
        action="store_true",
        help="Confirm variant pruning",
    )
    parser.add_argument(
        "--skip-image-validation", action="store_true", help="Skip image URL reachability checks"
    )
    parser.add_argument(
        "--unarchive", action="store_true", help="Restore archived products that match a row"
    )
    parser.add_argument(
        "--column-mapping",
        type=str,
        default=None,
        help='JSON object mapping source headers to fields, e.g. \'{"Name": "title"}\'',
    )
    parser.add_argument(
        "--resume-from-row",
        type=int,
        default=0,
        help="First source row to process (2 = first data row)",
    )
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Use an empty in-memory catalog instead of DATABASE_URL",
    )
    parser.add_argument("--json", action="store_true", help="Print the final job as JSON")
    return parser


def file_ref(path: Path) -> SourceFileRef:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return SourceFileRef(
        path=str(path),
        filename=path.name,
        size_bytes=path.stat().st_size,
        checksum=digest.hexdigest(),
    )


def main(argv=None) -> int:
    """Run one import and return the process exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    csv_path = Path(args.csv_path)
    if not csv_path.exists():
        logger.error(f"File not found: {csv_path}")
        return 2

    if args.prune_missing_variants and not args.confirm_prune:
        logger.error("--prune-missing-variants deletes catalog variants; add --confirm-prune")
        return 2

    try:
        options = parse_options(
            {
                "mode": args.mode,
                "upsert": args.upsert,
                "image_strategy": args.image_strategy,
                "prune_missing_variants": args.prune_missing_variants,
                "skip_image_validation": args.skip_image_validation,
                "unarchive": args.unarchive,
                "column_mapping": json.loads(args.column_mapping) if args.column_mapping else {},
            }
        )
    except ValueError as e:
        logger.error(f"Invalid options: {e}")
        return 2

    if args.memory:
        controller = JobController(
            job_store=InMemoryJobStore(),
            catalog_store=InMemoryCatalogStore(),
            artifact_store=build_artifact_store(settings),
            settings=settings,
        )
    else:
        controller = build_job_controller(settings, worker_only=True)

    try:
        job = controller.submit(file_ref(csv_path), options, resume_from_row=args.resume_from_row)
        job = controller.run(job.id, worker_id="cli")
    except ValueError as e:
        logger.error(f"Invalid arguments: {e}")
        return 2
    except CatalogImportError as e:
        logger.error(f"Import failed: [{e.code}] {e.message}")
        return 1

    if args.json:
        print(json.dumps(job.model_dump(mode="json"), indent=2))
    else:
        stats = job.stats
        logger.info("=" * 60)
        logger.info(f"IMPORT {job.status.value.upper()} ({job.options.mode.value})")
        logger.info("=" * 60)
        logger.info(f"Job ID: {job.id}")
        logger.info(f"Rows read: {stats.rows_total}")
        logger.info(f"Valid rows: {stats.rows_valid}")
        logger.info(f"Invalid rows: {stats.rows_invalid}")
        logger.info(f"Created: {stats.created}")
        logger.info(f"Updated: {stats.updated}")
        logger.info(f"Skipped: {stats.skipped}")
        logger.info(f"Failed: {stats.failed}")
        logger.info(f"Processing time: {stats.duration_ms / 1000:.2f} seconds")
        if job.error:
            logger.warning(f"Error: [{job.error.code}] {job.error.message}")
        logger.info(f"Validation report: {job.artifacts.validation_report_url}")
        logger.info(f"Error rows: {job.artifacts.error_rows_url}")
        logger.info(f"Result rows: {job.artifacts.result_rows_url}")

    return 0 if job.status == JobStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
