import threading
from html import escape
from typing import Callable, Dict, List, Optional

from .chapter_list import ChapterList
from .config import JobOptions
from .errors import ChapterError, ConfigurationError, EmptyContentError, JobAbortedError
from .models import ERROR, ChapterDescriptor, ContentFragment, Page
from .rate_limiter import HostRateLimiter
from .sanitizer import has_content, sanitize
from .strategy import Strategy
from .utils import get_logger

logger = get_logger("Orchestrator")

IDLE = "IDLE"
RUNNING = "RUNNING"
COMPLETED = "COMPLETED"
ABORTED = "ABORTED"


def error_placeholder(chapter: ChapterDescriptor, message: str) -> ContentFragment:
    url = escape(chapter.source_url)
    html = (
        '<div class="chapter-error">'
        f"<p>Error loading chapter: {escape(message)}</p>"
        f'<p><a href="{url}">{url}</a></p>'
        "</div>"
    )
    return ContentFragment(title=chapter.title, source_url=chapter.source_url,
                           html=html, is_error=True)


class RetrievalJob:
    """
    Fetches the included chapters one after another and turns each page
    into a sanitized ContentFragment.

    A failed chapter becomes an error placeholder and the batch continues,
    unless options.abort_on_failure is set. cancel_event is checked between
    chapters only, never during a fetch.
    """

    def __init__(self, chapters: ChapterList, strategy: Strategy, fetcher,
                 options: JobOptions,
                 limiter: Optional[HostRateLimiter] = None,
                 cancel_event: Optional[threading.Event] = None,
                 on_progress: Optional[Callable[[ChapterDescriptor], None]] = None):
        self.chapters = chapters
        self.strategy = strategy
        self.fetcher = fetcher
        self.options = options
        self.limiter = limiter or HostRateLimiter(options.min_interval)
        self.cancel_event = cancel_event or threading.Event()
        self.on_progress = on_progress

        self.state = IDLE
        self.cancelled = False
        # Keyed by source URL; chapter indexes change when the list is reordered
        self._results: Dict[str, ContentFragment] = {}

    @property
    def fragments(self) -> List[ContentFragment]:
        """Fetched fragments in the current order of the chapter list."""
        return [self._results[c.source_url] for c in self.chapters
                if c.source_url in self._results]

    @property
    def failed(self) -> List[ChapterDescriptor]:
        return [c for c in self.chapters.included() if c.status == ERROR]

    def validate(self) -> List[ChapterDescriptor]:
        included = self.chapters.included()
        if not included:
            raise ConfigurationError("No chapters selected for download.")
        if len(included) > self.options.max_chapters:
            raise ConfigurationError(
                f"{len(included)} chapters selected, the maximum is {self.options.max_chapters}. "
                f"Select fewer chapters or raise max_chapters."
            )
        return included

    def run(self) -> List[ContentFragment]:
        if self.state != IDLE:
            raise RuntimeError(f"Job already ran (state {self.state})")

        included = self.validate()
        self.chapters.reset_statuses()
        self.state = RUNNING
        total = len(included)
        logger.info(f"Retrieving {total} chapters with '{self.strategy.name}' strategy")

        for position, chapter in enumerate(included, start=1):
            if self.cancel_event.is_set():
                self.cancelled = True
                logger.warning(f"Cancelled after {position - 1} of {total} chapters.")
                break

            fragment = self._retrieve(chapter, f"[{position}/{total}]")
            self._results[chapter.source_url] = fragment

            if fragment.is_error and self.options.abort_on_failure:
                self.state = ABORTED
                raise JobAbortedError(
                    f"Chapter {chapter.index} failed and abort on failure is set: {chapter.error}",
                    chapters=self.chapters,
                )

        if self.cancelled and (not self.options.package_on_cancel or not self._results):
            self.state = ABORTED
            raise JobAbortedError("Job cancelled, nothing will be packaged.", chapters=self.chapters)

        self.state = COMPLETED
        logger.info(f"Retrieved {len(self._results) - len(self.failed)} of {total} chapters, "
                    f"{len(self.failed)} failed.")
        return self.fragments

    def retry_chapter(self, index: int) -> ContentFragment:
        """Fetches one failed chapter again and swaps its fragment in the results."""
        if self.state == RUNNING:
            raise RuntimeError("Cannot retry while the job is running")
        chapter = self.chapters[index]
        if chapter.status != ERROR:
            raise ValueError(f"Chapter {index} has not failed (status {chapter.status})")

        chapter.reset()
        self._notify(chapter)
        fragment = self._retrieve(chapter, "[retry]")
        if chapter.source_url in self._results:
            self._results[chapter.source_url] = fragment
        return fragment

    def _retrieve(self, chapter: ChapterDescriptor, label: str) -> ContentFragment:
        self.limiter.wait(chapter.source_url)
        chapter.mark_in_progress()
        self._notify(chapter)
        logger.info(f"{label} Fetching '{chapter.title}' ({chapter.source_url})")

        try:
            fragment = self._fetch_fragment(chapter)
        except ChapterError as e:
            logger.warning(f"{label} Chapter {chapter.index} failed: {e}")
            chapter.mark_error(str(e), transient=e.transient)
            self._notify(chapter)
            return error_placeholder(chapter, str(e))

        chapter.mark_complete()
        self._notify(chapter)
        return fragment

    def _fetch_fragment(self, chapter: ChapterDescriptor) -> ContentFragment:
        url = chapter.source_url
        self.limiter.record(url)
        result = self.fetcher.fetch(url)

        page = Page.from_html(result.content, result.final_url or url)
        region = self.strategy.locate_content_region(page)
        if region is None:
            raise EmptyContentError(url, "No content region found")

        sanitize(region)
        if not has_content(region):
            raise EmptyContentError(url, "Content region is empty")

        if chapter.title_edited:
            title = chapter.title
        else:
            title = self.strategy.extract_chapter_title(page) or chapter.title
        return ContentFragment(title=title, source_url=url, html=region.decode_contents())

    def _notify(self, chapter: ChapterDescriptor):
        if self.on_progress is not None:
            self.on_progress(chapter)
