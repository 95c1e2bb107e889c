import argparse
import logging
import pathlib
import signal
import sys
import threading
from dataclasses import replace
from typing import Optional

from .config import CONFIG_PATH, JobOptions, load_options
from .errors import ConfigurationError, JobAbortedError, Web2EpubError
from .fetcher import HttpFetcher
from .models import StoryMetadata
from .pipeline import analyze_story, build_epub, default_output_path, download_story
from .registry import build_registry
from .sites import custom_strategy
from .user_interaction import edit_metadata, print_chapter_table, print_summary, review_chapters
from .utils import get_logger, setup_logging

logger = get_logger("Main")


def parse_chapter_range(text: str):
    """'3-10' -> (3, 10), '7' -> (7, 7); 1-based and inclusive."""
    try:
        if "-" in text:
            start_str, end_str = text.split("-", 1)
            start, end = int(start_str), int(end_str)
        else:
            start = end = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid chapter range '{text}', expected N-M") from None
    if start < 1 or end < start:
        raise argparse.ArgumentTypeError(f"Invalid chapter range '{text}', expected 1 <= N <= M")
    return start, end


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Turn a web serial into an EPUB")
    parser.add_argument("url", help="URL of the story's table of contents page")
    parser.add_argument("--output", "-o", help="EPUB file to write (default: <title>.epub)")
    parser.add_argument("--config", help=f"JSON options file (default: {CONFIG_PATH})")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    job = parser.add_argument_group("retrieval")
    job.add_argument("--min-interval", type=float, help="Seconds between requests to one host")
    job.add_argument("--max-chapters", type=int, help="Refuse jobs with more chapters than this")
    job.add_argument("--abort-on-failure", action="store_true",
                     help="Stop at the first chapter that fails")
    job.add_argument("--discard-on-cancel", action="store_true",
                     help="Write nothing if the download is interrupted")

    chapters = parser.add_argument_group("chapters")
    chapters.add_argument("--chapters", type=parse_chapter_range, metavar="N-M",
                          help="Only download chapters N to M (1-based)")
    chapters.add_argument("--reverse", action="store_true",
                          help="Reverse the discovered chapter order")
    chapters.add_argument("--interactive", action="store_true",
                          help="Review chapters and metadata before downloading")
    chapters.add_argument("--dry-run", action="store_true",
                          help="List the chapters and stop")

    meta = parser.add_argument_group("metadata")
    meta.add_argument("--title")
    meta.add_argument("--author")
    meta.add_argument("--language")
    meta.add_argument("--subject")
    meta.add_argument("--description")
    meta.add_argument("--series")
    meta.add_argument("--series-index")

    parsing = parser.add_argument_group("parsing")
    parsing.add_argument("--content-selector", help="CSS selector of the chapter text")
    parsing.add_argument("--chapter-title-selector", help="CSS selector of the chapter title")
    parsing.add_argument("--unwanted-selector", help="CSS selector of elements to drop")

    output = parser.add_argument_group("output")
    output.add_argument("--stylesheet", help="CSS file to use instead of the built-in one")
    output.add_argument("--verify", action="store_true",
                        help="Read the finished EPUB back and check it")
    return parser


def apply_option_overrides(options: JobOptions, args) -> JobOptions:
    if args.min_interval is not None:
        options.min_interval = args.min_interval
    if args.max_chapters is not None:
        options.max_chapters = args.max_chapters
    if args.abort_on_failure:
        options.abort_on_failure = True
    if args.discard_on_cancel:
        options.package_on_cancel = False
    if args.stylesheet:
        try:
            options.stylesheet = pathlib.Path(args.stylesheet).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read stylesheet {args.stylesheet}: {e}") from e
    return options.validate()


def apply_metadata_overrides(metadata: StoryMetadata, args) -> StoryMetadata:
    overrides = {
        "title": args.title,
        "author": args.author,
        "language": args.language,
        "subject": args.subject,
        "description": args.description,
        "series_name": args.series,
        "series_index": args.series_index,
    }
    return replace(metadata, **{k: v for k, v in overrides.items() if v is not None})


def run(args) -> Optional[pathlib.Path]:
    config_path = pathlib.Path(args.config) if args.config else CONFIG_PATH
    options = apply_option_overrides(load_options(config_path), args)

    registry = build_registry()
    strategy = None
    if args.content_selector:
        strategy = custom_strategy(
            args.content_selector,
            chapter_title_selector=args.chapter_title_selector,
            unwanted_selector=args.unwanted_selector,
            base=registry.resolve(args.url),
        )

    fetcher = HttpFetcher(timeout=options.request_timeout, user_agent=options.user_agent)
    try:
        # --- Phase 1: Analysis ---
        analysis = analyze_story(args.url, fetcher, registry, strategy)
        if len(analysis.chapters) == 0:
            raise ConfigurationError(f"No chapters found at {args.url}")

        # --- Phase 2: Selection ---
        if args.reverse:
            analysis.chapters.reverse()
        if args.chapters:
            start, end = args.chapters
            try:
                analysis.chapters.select_range(start - 1, end - 1)
            except IndexError as e:
                raise ConfigurationError(
                    f"--chapters {start}-{end} is outside 1-{len(analysis.chapters)}") from e

        analysis.metadata = apply_metadata_overrides(analysis.metadata, args)
        if args.interactive:
            review_chapters(analysis.chapters)
            analysis.metadata = edit_metadata(analysis.metadata)

        if args.dry_run:
            print_chapter_table(analysis.chapters)
            logger.info(f"Dry run: {len(analysis.chapters.included())} chapters selected.")
            return None

        # --- Phase 3: Retrieval ---
        cancel_event = threading.Event()

        def request_cancel(signum, frame):
            logger.warning("Cancel requested, stopping after the current chapter.")
            cancel_event.set()

        previous_handler = signal.signal(signal.SIGINT, request_cancel)
        try:
            fragments = download_story(analysis, fetcher, options, cancel_event=cancel_event)
        finally:
            signal.signal(signal.SIGINT, previous_handler)
    finally:
        fetcher.close()

    failed = [c for c in analysis.chapters.included() if c.error]
    if failed:
        print_summary(analysis.chapters)
        logger.warning(f"{len(failed)} chapters failed and appear as error pages.")

    # --- Phase 4: Packaging ---
    output_path = pathlib.Path(args.output) if args.output else default_output_path(analysis.metadata)
    return build_epub(analysis, fragments, options, output_path, verify=args.verify)


def main(argv=None):
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(log_level)

    try:
        path = run(args)
    except JobAbortedError as e:
        logger.error(str(e))
        if e.chapters is not None:
            print_summary(e.chapters)
        sys.exit(1)
    except Web2EpubError as e:
        logger.error(str(e))
        sys.exit(1)

    if path is not None:
        logger.info(f"Done: {path}")


if __name__ == "__main__":
    main()
