#!/usr/bin/env python3
"""
Listing Harvester CLI
=====================
Subcommands:

    crawl        walk listing pages, harvest and enrich new detail pages
    score        score unchecked records in batches against a profile
    recent       export the most recent records to JSON and/or CSV
    recommended  export recommended records, highest score first

Every flag has a ``HARVESTER_*`` environment equivalent (``.env`` is
loaded first); flags win over the environment.

Run with: python -m harvester <command> [options]
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env (API key, selectors) before the config is built
_env_path = Path(__file__).resolve().parent.parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()

from .errors import ConfigurationError
from .export import export_csv, export_json, log_summary, summarize_records
from .models import BatchProgress
from .orchestrator import CrawlOrchestrator, HarvestContext
from .run_config import HarvestRunConfig
from .scheduler import SCORER_FAILED
from .utils import truncate

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


def _install_stop_handler(orchestrator: CrawlOrchestrator) -> None:
    """First Ctrl-C stops at the next checkpoint, the second one aborts."""
    def handler(signum, frame):
        if orchestrator.context.stop_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received, finishing current item (Ctrl-C again to abort)")
        orchestrator.stop()

    signal.signal(signal.SIGINT, handler)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _scoring_exit_code(progress: BatchProgress) -> int:
    """Non-zero when the scorer gave up mid-run."""
    return 1 if progress.stop_reason == SCORER_FAILED else 0


def _cmd_crawl(cfg: HarvestRunConfig, args) -> int:
    context = HarvestContext.from_config(cfg, need_crawl=True, need_scoring=args.score)
    orchestrator = CrawlOrchestrator(context)
    _install_stop_handler(orchestrator)
    try:
        report = orchestrator.run_sync(score_after=args.score)
    finally:
        context.close()

    if report.batch_progress is None:
        return 0
    progress = report.batch_progress
    logger.info(
        f"Scoring: {progress.total_processed}/{progress.total_unmatched} "
        f"in {progress.batch_number} batch(es), reason={progress.stop_reason}"
    )
    return _scoring_exit_code(progress)


def _cmd_score(cfg: HarvestRunConfig, args) -> int:
    context = HarvestContext.from_config(cfg, need_crawl=False, need_scoring=True)
    orchestrator = CrawlOrchestrator(context)
    _install_stop_handler(orchestrator)
    try:
        progress = asyncio.run(orchestrator.score())
    finally:
        context.close()
    return _scoring_exit_code(progress)


def _export_records(records, args, default_path: str) -> int:
    exported = []
    if args.output_json:
        exported.append(export_json(records, args.output_json))
    if args.output_csv:
        exported.append(export_csv(records, args.output_csv))
    if not exported:
        exported.append(export_json(records, default_path))

    log_summary(summarize_records(records))
    print("\n" + "-" * 40)
    for path in exported:
        print(f"  Exported: {path}")
    print("-" * 40)
    return 0


def _cmd_recent(cfg: HarvestRunConfig, args) -> int:
    context = HarvestContext.from_config(cfg, need_crawl=False, need_scoring=False)
    try:
        records = context.store.get_recent(args.limit)
    finally:
        context.close()

    if not records:
        logger.warning("No records stored yet")
        return 0
    return _export_records(records, args, "recent.json")


def _cmd_recommended(cfg: HarvestRunConfig, args) -> int:
    context = HarvestContext.from_config(cfg, need_crawl=False, need_scoring=False)
    try:
        records = context.store.get_recommended(args.limit)
    finally:
        context.close()

    if not records:
        logger.warning("No recommended records yet (run 'score' first)")
        return 0
    for record in records:
        score = record.match_score if record.match_score is not None else 0.0
        logger.info(f"  {score:5.1f} | {truncate(record.title, 60)} | {record.url}")
    return _export_records(records, args, "recommended.json")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='python -m harvester',
        description='Incremental listing harvester with OCR enrichment and batch scoring',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m harvester crawl --listing-url "https://example.com/jobs?page={page}" --end-page 20
  python -m harvester crawl --score --profile profile.md --instructions rubric.md
  python -m harvester score --batch-size 10
  python -m harvester recent --limit 100 --output-csv recent.csv
  python -m harvester recommended --limit 20 --output-csv shortlist.csv
        """
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--db', dest='db_path', help='SQLite database path')

    sub = parser.add_subparsers(dest='command', required=True)

    crawl = sub.add_parser('crawl', help='Walk listing pages and harvest new items')
    crawl.add_argument('--listing-url', dest='listing_url_template',
                       help='Listing URL template containing {page}')
    crawl.add_argument('--start-page', dest='start_page', type=int)
    crawl.add_argument('--end-page', dest='end_page', type=int, help='Last page (default: open-ended)')
    crawl.add_argument('--link-selector', dest='link_selector')
    crawl.add_argument('--title-selector', dest='title_selector')
    crawl.add_argument('--body-selector', dest='body_selector')
    crawl.add_argument('--field-selector', dest='field_selector')
    crawl.add_argument('--page-delay', dest='page_delay', type=float)
    crawl.add_argument('--detail-delay', dest='detail_delay', type=float)
    crawl.add_argument('--timeout', dest='timeout_seconds', type=int, help='Per-page timeout (seconds)')
    crawl.add_argument('--static', dest='use_browser', action='store_const', const=False,
                       help='Fetch with requests instead of Playwright')
    crawl.add_argument('--headed', dest='headless', action='store_const', const=False,
                       help='Show the browser window')
    crawl.add_argument('--no-rewrite', dest='enable_rewrite', action='store_const', const=False)
    crawl.add_argument('--score', action='store_true', help='Score unchecked records after crawling')
    crawl.add_argument('--profile', dest='profile_path')
    crawl.add_argument('--instructions', dest='instructions_path')

    score = sub.add_parser('score', help='Score unchecked records in batches')
    score.add_argument('--batch-size', dest='batch_size', type=int)
    score.add_argument('--cooldown', dest='batch_cooldown', type=float)
    score.add_argument('--profile', dest='profile_path')
    score.add_argument('--instructions', dest='instructions_path')

    recent = sub.add_parser('recent', help='Export the most recent records')
    recent.add_argument('--limit', type=int, default=50)
    recent.add_argument('--output-json', type=str)
    recent.add_argument('--output-csv', type=str)

    recommended = sub.add_parser('recommended', help='Export recommended records, best score first')
    recommended.add_argument('--limit', type=int, default=50)
    recommended.add_argument('--output-json', type=str)
    recommended.add_argument('--output-csv', type=str)

    return parser


_COMMANDS = {
    'crawl': _cmd_crawl,
    'score': _cmd_score,
    'recent': _cmd_recent,
    'recommended': _cmd_recommended,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        cfg = HarvestRunConfig.from_cli_args(args)
        cfg.log_summary()
        return _COMMANDS[args.command](cfg, args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Aborted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
