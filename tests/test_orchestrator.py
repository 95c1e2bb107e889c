import threading
import unittest

from web2epub.chapter_list import ChapterList
from web2epub.config import JobOptions
from web2epub.errors import ConfigurationError, JobAbortedError, RetrievalError
from web2epub.fetcher import FetchResult
from web2epub.models import COMPLETE, ERROR, IN_PROGRESS, PENDING
from web2epub.orchestrator import (
    ABORTED,
    COMPLETED,
    IDLE,
    RetrievalJob,
    error_placeholder,
)
from web2epub.rate_limiter import HostRateLimiter
from web2epub.strategy import DEFAULT_STRATEGY

LONG_TEXT = "The rain had not stopped for three days. " * 8


def chapter_page(n):
    return (f"<html><body><h1>Page Title {n}</h1>"
            f"<article><p>Chapter {n}. {LONG_TEXT}</p><script>track()</script></article>"
            "</body></html>")


class FakeFetcher:
    """Serves canned pages by URL; a mapped exception is raised instead."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return FetchResult(content=page, final_url=url, status_code=200)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_chapters(count):
    return ChapterList.from_links(
        (f"https://ex.com/c/{n}", f"Chapter {n}") for n in range(1, count + 1))


def make_pages(count):
    return {f"https://ex.com/c/{n}": chapter_page(n) for n in range(1, count + 1)}


class TestRetrievalJob(unittest.TestCase):
    def setUp(self):
        self.options = JobOptions(min_interval=0)

    def make_job(self, chapters, pages, **kwargs):
        self.fetcher = FakeFetcher(pages)
        return RetrievalJob(chapters, DEFAULT_STRATEGY, self.fetcher, self.options, **kwargs)

    def test_all_chapters_succeed(self):
        chapters = make_chapters(3)
        job = self.make_job(chapters, make_pages(3))

        fragments = job.run()

        self.assertEqual(job.state, COMPLETED)
        self.assertFalse(job.cancelled)
        self.assertEqual([f.title for f in fragments],
                         ["Page Title 1", "Page Title 2", "Page Title 3"])
        self.assertTrue(all(not f.is_error for f in fragments))
        self.assertIn("Chapter 2.", fragments[1].html)
        self.assertNotIn("script", fragments[1].html)
        self.assertEqual([c.status for c in chapters], [COMPLETE] * 3)
        self.assertEqual(self.fetcher.calls, chapters.urls())

    def test_failed_chapter_gets_placeholder_and_batch_continues(self):
        chapters = make_chapters(3)
        pages = make_pages(3)
        pages["https://ex.com/c/2"] = RetrievalError(
            "https://ex.com/c/2", "HTTP 503: Service Unavailable", transient=True, status_code=503)
        job = self.make_job(chapters, pages)

        fragments = job.run()

        self.assertEqual(len(fragments), 3)
        self.assertTrue(fragments[1].is_error)
        self.assertEqual(fragments[1].title, "Chapter 2")
        self.assertIn("HTTP 503", fragments[1].html)
        self.assertIn('href="https://ex.com/c/2"', fragments[1].html)
        self.assertEqual(chapters[1].status, ERROR)
        self.assertTrue(chapters[1].can_retry)
        self.assertEqual(job.failed, [chapters[1]])
        self.assertEqual(job.state, COMPLETED)

    def test_empty_content_is_a_chapter_failure(self):
        chapters = make_chapters(1)
        job = self.make_job(chapters, {
            "https://ex.com/c/1": "<html><body><article><script>x()</script></article></body></html>",
        })

        fragments = job.run()

        self.assertTrue(fragments[0].is_error)
        self.assertEqual(chapters[0].status, ERROR)
        self.assertFalse(chapters[0].transient)

    def test_abort_on_failure_stops_the_batch(self):
        self.options.abort_on_failure = True
        chapters = make_chapters(3)
        pages = make_pages(3)
        pages["https://ex.com/c/1"] = RetrievalError("https://ex.com/c/1", "HTTP 404: Not Found")
        job = self.make_job(chapters, pages)

        with self.assertRaises(JobAbortedError) as ctx:
            job.run()

        self.assertIs(ctx.exception.chapters, chapters)
        self.assertEqual(job.state, ABORTED)
        self.assertEqual(self.fetcher.calls, ["https://ex.com/c/1"])
        self.assertEqual(chapters[1].status, PENDING)

    def test_selection_over_maximum_is_rejected_before_fetching(self):
        self.options.max_chapters = 2
        job = self.make_job(make_chapters(3), make_pages(3))

        with self.assertRaises(ConfigurationError):
            job.run()

        self.assertEqual(self.fetcher.calls, [])
        self.assertEqual(job.state, IDLE)

    def test_empty_selection_is_rejected(self):
        chapters = make_chapters(2)
        chapters.select_none()
        job = self.make_job(chapters, make_pages(2))

        with self.assertRaises(ConfigurationError):
            job.run()
        self.assertEqual(self.fetcher.calls, [])

    def test_excluded_chapters_are_not_fetched(self):
        chapters = make_chapters(3)
        chapters.set_included(1, False)
        job = self.make_job(chapters, make_pages(3))

        fragments = job.run()

        self.assertEqual(len(fragments), 2)
        self.assertEqual(self.fetcher.calls, ["https://ex.com/c/1", "https://ex.com/c/3"])
        self.assertEqual(chapters[1].status, PENDING)

    def test_cancel_between_chapters_packages_partial_result(self):
        cancel = threading.Event()

        def on_progress(chapter):
            if chapter.status == COMPLETE:
                cancel.set()

        chapters = make_chapters(3)
        job = self.make_job(chapters, make_pages(3), cancel_event=cancel, on_progress=on_progress)

        fragments = job.run()

        self.assertTrue(job.cancelled)
        self.assertEqual(job.state, COMPLETED)
        self.assertEqual(len(fragments), 1)
        self.assertEqual(self.fetcher.calls, ["https://ex.com/c/1"])
        self.assertEqual(chapters[2].status, PENDING)

    def test_cancel_without_packaging_raises(self):
        self.options.package_on_cancel = False
        cancel = threading.Event()
        job = self.make_job(make_chapters(2), make_pages(2), cancel_event=cancel,
                            on_progress=lambda c: cancel.set())

        with self.assertRaises(JobAbortedError):
            job.run()
        self.assertEqual(job.state, ABORTED)

    def test_cancel_before_start_has_nothing_to_package(self):
        cancel = threading.Event()
        cancel.set()
        job = self.make_job(make_chapters(2), make_pages(2), cancel_event=cancel)

        with self.assertRaises(JobAbortedError):
            job.run()
        self.assertEqual(self.fetcher.calls, [])

    def test_requests_to_one_host_are_spaced(self):
        clock = FakeClock()
        limiter = HostRateLimiter(2.0, clock=clock, sleep=clock.sleep)
        job = self.make_job(make_chapters(3), make_pages(3), limiter=limiter)

        job.run()

        self.assertEqual(clock.sleeps, [2.0, 2.0])

    def test_edited_title_is_kept(self):
        chapters = make_chapters(2)
        chapters.rename(0, "Prologue")
        job = self.make_job(chapters, make_pages(2))

        fragments = job.run()

        self.assertEqual(fragments[0].title, "Prologue")
        self.assertEqual(fragments[1].title, "Page Title 2")

    def test_progress_is_reported_per_transition(self):
        events = []
        pages = make_pages(2)
        pages["https://ex.com/c/2"] = RetrievalError("https://ex.com/c/2", "boom")
        job = self.make_job(make_chapters(2), pages,
                            on_progress=lambda c: events.append((c.index, c.status)))

        job.run()

        self.assertEqual(events, [
            (0, IN_PROGRESS), (0, COMPLETE),
            (1, IN_PROGRESS), (1, ERROR),
        ])

    def test_retry_failed_chapter(self):
        chapters = make_chapters(2)
        pages = make_pages(2)
        good_page = pages["https://ex.com/c/2"]
        pages["https://ex.com/c/2"] = RetrievalError("https://ex.com/c/2", "timeout", transient=True)
        job = self.make_job(chapters, pages)
        job.run()
        self.assertTrue(job.fragments[1].is_error)

        pages["https://ex.com/c/2"] = good_page
        fragment = job.retry_chapter(1)

        self.assertFalse(fragment.is_error)
        self.assertEqual(chapters[1].status, COMPLETE)
        self.assertIsNone(chapters[1].error)
        self.assertIs(job.fragments[1], fragment)
        self.assertEqual(job.failed, [])

    def test_retry_after_reordering_replaces_the_right_fragment(self):
        chapters = make_chapters(2)
        pages = make_pages(2)
        good_page = pages["https://ex.com/c/1"]
        pages["https://ex.com/c/1"] = RetrievalError("https://ex.com/c/1", "timeout", transient=True)
        job = self.make_job(chapters, pages)
        job.run()
        second = job.fragments[1]

        chapters.reverse()
        self.assertEqual(chapters[1].source_url, "https://ex.com/c/1")
        pages["https://ex.com/c/1"] = good_page
        fragment = job.retry_chapter(1)

        self.assertEqual(fragment.source_url, "https://ex.com/c/1")
        self.assertEqual(job.fragments, [second, fragment])
        self.assertEqual([f.source_url for f in job.fragments],
                         ["https://ex.com/c/2", "https://ex.com/c/1"])
        self.assertTrue(all(not f.is_error for f in job.fragments))

    def test_retry_requires_failed_chapter(self):
        job = self.make_job(make_chapters(1), make_pages(1))
        job.run()
        with self.assertRaises(ValueError):
            job.retry_chapter(0)

    def test_job_runs_once(self):
        job = self.make_job(make_chapters(1), make_pages(1))
        job.run()
        with self.assertRaises(RuntimeError):
            job.run()

    def test_unexpected_errors_propagate(self):
        # Unknown URL: the fake fetcher raises KeyError, which is not a chapter failure
        job = self.make_job(make_chapters(1), {})
        with self.assertRaises(KeyError):
            job.run()


class TestErrorPlaceholder(unittest.TestCase):
    def test_markup_is_escaped(self):
        chapters = ChapterList.from_links([("https://ex.com/c?a=1&b=2", "Odd <one>")])
        fragment = error_placeholder(chapters[0], "Bad <tag> & more")

        self.assertTrue(fragment.is_error)
        self.assertEqual(fragment.title, "Odd <one>")
        self.assertIn("Bad &lt;tag&gt; &amp; more", fragment.html)
        self.assertIn('href="https://ex.com/c?a=1&amp;b=2"', fragment.html)
        self.assertTrue(fragment.html.startswith('<div class="chapter-error">'))


if __name__ == "__main__":
    unittest.main()
