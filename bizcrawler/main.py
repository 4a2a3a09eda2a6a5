# bizcrawler/main.py
import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from bizcrawler.config import DATA_DIR, CrawlerConfig, EntityKind
from bizcrawler.detail import CrawlReport, DetailCrawler
from bizcrawler.storage import dedup_list, ids_file_path, iter_detail_ids, read_ids_file

logger = logging.getLogger("bizcrawler")

PROGRESS_EVERY = 10

STATUS_LABELS = {
    "success": "SUCCESS",
    "skipped": "SKIPPED",
    "not_found": "NOT FOUND",
    "failed": "FAILED",
    "error": "ERROR",
}


def config_logger(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """
    控制台默认只输出 WARNING 以上，逐条进度由 print 负责；
    --enable-logs 时控制台 INFO 并另写一个 DEBUG 级别的日志文件，--verbose 时控制台 DEBUG。
    """
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    if verbose:
        console_handler.setLevel(logging.DEBUG)
    elif log_file is not None:
        console_handler.setLevel(logging.INFO)
    else:
        console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s - %(message)s"))
    logger.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s", datefmt="%H:%M:%S"
        ))
        logger.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bizcrawler",
        description="Crawl company/business details from findbiz.nat.gov.tw",
        epilog=(
            "examples:\n"
            "  bizcrawler company --ids 12345678,87654321\n"
            "  bizcrawler business --file business_ids.txt --enable-logs\n"
            "  bizcrawler company --from-data 114 4 --limit 100 --safe\n"
            "  bizcrawler company --from-json --limit 100"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("kind", choices=[k.value for k in EntityKind])

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--ids", help="comma-separated list of IDs")
    source.add_argument("--file", type=Path, help="file containing IDs, one per line")
    source.add_argument("--from-data", nargs=2, type=int, metavar=("YEAR", "MONTH"),
                        help="load IDs from the data repository ids file")
    source.add_argument("--from-json", action="store_true",
                        help="re-crawl every ID that already has a JSON record")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--safe", action="store_true", help="slower but more stable profile")
    mode.add_argument("--fast", action="store_true",
                      help="disable the global rate limiter (trusted runs only)")

    parser.add_argument("--limit", type=int, help="limit number of IDs to process")
    parser.add_argument("--offset", type=int, help="skip first N IDs")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR)
    parser.add_argument("--proxy", help="proxy URL for all requests")
    parser.add_argument("--max-retries", type=int, help="override retry count")
    parser.add_argument("--merge", action="store_true",
                        help="merge new fields into the existing JSON record")
    parser.add_argument("--enable-logs", action="store_true", help="also write a log file")
    parser.add_argument("--verbose", action="store_true",
                        help="debug output (implies --enable-logs)")
    return parser


def build_config(args) -> CrawlerConfig:
    overrides = {"data_dir": args.data_dir, "merge_existing": args.merge}
    if args.proxy:
        overrides["proxy"] = args.proxy
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries

    if args.safe:
        return CrawlerConfig.safe(**overrides)
    if args.fast:
        return CrawlerConfig.fast(**overrides)
    return CrawlerConfig.default(**overrides)


def load_ids(args, kind: EntityKind) -> List[str]:
    if args.ids:
        ids = [x.strip() for x in args.ids.split(",") if x.strip()]
    elif args.file:
        if not args.file.exists():
            raise FileNotFoundError(f"file '{args.file}' does not exist")
        ids = read_ids_file(args.file)
    elif args.from_data:
        year, month = args.from_data
        if not year or not (1 <= month <= 12):
            raise ValueError(f"--from-data requires a valid year and month, got {year} {month}")
        path = ids_file_path(args.data_dir, kind, year, month)
        if not path.exists():
            raise FileNotFoundError(f"ids file '{path}' does not exist, run the registry list crawler first")
        ids = read_ids_file(path)
        print(f"Loaded {len(ids)} IDs from {path}")
    else:
        details = Path(args.data_dir) / kind.plural / "details"
        if not details.is_dir():
            raise FileNotFoundError(f"data directory '{details}' does not exist")
        print(f"Scanning for existing JSON files in {details}...")
        ids = sorted(iter_detail_ids(args.data_dir, kind))
        print(f"Found {len(ids)} existing JSON files")

    ids = dedup_list(ids)
    if args.offset:
        ids = ids[args.offset:]
    if args.limit is not None:
        ids = ids[:args.limit]
    return ids


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    kind = EntityKind(args.kind)

    log_file = None
    if args.enable_logs or args.verbose:
        log_file = Path(f"detail_crawl_{kind.value}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log")
    config_logger(verbose=args.verbose, log_file=log_file)

    try:
        ids = load_ids(args, kind)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not ids:
        print("Error: no IDs specified", file=sys.stderr)
        return 1

    config = build_config(args)
    total = len(ids)
    print(f"Starting {kind.value} detail crawler")
    print(f"Processing {total} IDs")

    def on_result(entity_id: str, status: str, report: CrawlReport) -> None:
        print(f"Processing {kind.value} {entity_id} ({report.processed}/{total})... "
              f"{STATUS_LABELS.get(status, status.upper())}")
        if report.processed % PROGRESS_EVERY == 0:
            print(f"Progress: {report.processed}/{total} processed, "
                  f"{report.successful} successful, {report.failed} failed")

    with DetailCrawler(config) as crawler:
        report = crawler.crawl(ids, kind, on_result=on_result)

    print("\nCrawl completed!")
    print(f"Total processed: {report.processed}")
    print(f"Successful: {report.successful}")
    print(f"Skipped (fresh): {report.skipped}")
    print(f"Not found: {report.not_found}")
    print(f"Failed: {report.failed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
