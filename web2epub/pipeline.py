import pathlib
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .chapter_list import ChapterList
from .config import JobOptions
from .models import ChapterDescriptor, ContentFragment, Page, StoryMetadata
from .orchestrator import RetrievalJob
from .packager import EpubPacker
from .rate_limiter import HostRateLimiter
from .registry import StrategyRegistry
from .strategy import Strategy
from .utils import get_logger, safe_filename

logger = get_logger("Pipeline")


@dataclass
class StoryAnalysis:
    """Everything learned from the root page before any chapter is fetched."""
    page: Page
    strategy: Strategy
    metadata: StoryMetadata
    chapters: ChapterList


def analyze_story(url: str, fetcher, registry: StrategyRegistry,
                  strategy: Optional[Strategy] = None) -> StoryAnalysis:
    """
    Fetches the root page, then extracts metadata and the chapter list.
    A fetch failure here is fatal and raised as RetrievalError.
    """
    logger.info(f"Analyzing {url}")
    result = fetcher.fetch(url)
    page = Page.from_html(result.content, result.final_url or url)

    if strategy is None:
        strategy = registry.resolve(url)

    metadata = strategy.extract_metadata(page)
    chapters = strategy.discover_chapters(page)
    logger.info(f"Found {len(chapters)} chapters in '{metadata.title}' by {metadata.author}")
    return StoryAnalysis(page=page, strategy=strategy, metadata=metadata, chapters=chapters)


def download_story(analysis: StoryAnalysis, fetcher, options: JobOptions,
                   limiter: Optional[HostRateLimiter] = None,
                   cancel_event: Optional[threading.Event] = None,
                   on_progress: Optional[Callable[[ChapterDescriptor], None]] = None
                   ) -> List[ContentFragment]:
    job = RetrievalJob(
        analysis.chapters,
        analysis.strategy,
        fetcher,
        options,
        limiter=limiter,
        cancel_event=cancel_event,
        on_progress=on_progress,
    )
    return job.run()


def default_output_path(metadata: StoryMetadata, directory=".") -> pathlib.Path:
    stem = safe_filename(metadata.title) or "story"
    return pathlib.Path(directory) / f"{stem}.epub"


def build_epub(analysis: StoryAnalysis, fragments: List[ContentFragment],
               options: JobOptions, output_path: pathlib.Path,
               verify: bool = False, modified: Optional[datetime] = None) -> pathlib.Path:
    packer = EpubPacker(analysis.metadata, stylesheet=options.stylesheet, modified=modified)
    path = packer.write(output_path, fragments)
    if verify:
        packer.verify(path, len(fragments))
    return path
