import unittest
from dataclasses import FrozenInstanceError, replace

from web2epub.models import Page
from web2epub.strategy import (
    DEFAULT_STRATEGY,
    default_discover_chapters,
    default_extract_author,
    default_extract_chapter_title,
    default_extract_cover_url,
    default_extract_description,
    default_extract_language,
    default_extract_subject,
    default_extract_title,
    default_locate_content_region,
    first_non_blank,
    hyperlinks_to_chapter_list,
    is_likely_chapter_link,
)

LONG_TEXT = "It was a dark and stormy night. " * 10


def page(body, head="", url="https://ex.com/story/", html_attrs=""):
    return Page.from_html(
        f"<html{html_attrs}><head>{head}</head><body>{body}</body></html>", url)


class TestChapterDiscovery(unittest.TestCase):
    def test_trailing_slash_variant_is_dropped(self):
        doc = page(
            '<a href="https://ex.com/story/chapter-1">Chapter 1</a>'
            '<a href="https://ex.com/story/chapter-1/">Chapter 1 </a>'
        )
        chapters = default_discover_chapters(doc)
        self.assertEqual(len(chapters), 1)
        self.assertEqual(chapters[0].source_url, "https://ex.com/story/chapter-1")
        self.assertEqual(chapters[0].title, "Chapter 1")

    def test_scheme_and_fragment_variants_are_dropped(self):
        doc = page(
            '<a href="http://ex.com/c/1">Chapter 1</a>'
            '<a href="https://ex.com/c/1#comments">Chapter 1 comments</a>'
            '<a href="https://ex.com/c/2">Chapter 2</a>'
        )
        chapters = default_discover_chapters(doc)
        self.assertEqual(chapters.urls(), ["http://ex.com/c/1", "https://ex.com/c/2"])

    def test_no_hyperlinks_gives_empty_list(self):
        chapters = DEFAULT_STRATEGY.discover_chapters(page("<p>Nothing to see</p>"))
        self.assertEqual(len(chapters), 0)

    def test_empty_document_gives_empty_list(self):
        chapters = DEFAULT_STRATEGY.discover_chapters(Page.from_html("", "https://ex.com/"))
        self.assertEqual(len(chapters), 0)

    def test_relative_links_are_resolved(self):
        doc = page('<a href="ch/2">Chapter 2</a><a href="/story/ch/3">Chapter 3</a>')
        chapters = default_discover_chapters(doc)
        self.assertEqual(chapters.urls(),
                         ["https://ex.com/story/ch/2", "https://ex.com/story/ch/3"])

    def test_blank_and_non_http_links_are_skipped(self):
        doc = page(
            '<a href="javascript:void(0)">Chapter 1</a>'
            '<a href="mailto:author@ex.com">Chapter 2 feedback</a>'
            '<a href="/c/3"><img src="x.png"/></a>'
            '<a>Chapter 4</a>'
            '<a href="  ">Chapter 5</a>'
            '<a href="/c/6">Chapter 6</a>'
        )
        chapters = default_discover_chapters(doc)
        self.assertEqual(chapters.urls(), ["https://ex.com/c/6"])

    def test_unlikely_links_are_skipped(self):
        doc = page('<a href="https://ex.com/about">About</a><a href="/c/1">Chapter 1</a>')
        chapters = default_discover_chapters(doc)
        self.assertEqual([c.title for c in chapters], ["Chapter 1"])

    def test_rejected_link_still_counts_as_seen(self):
        element = page(
            '<a href="https://ex.com/about">About</a>'
            '<a href="https://ex.com/about/">Chapter list</a>'
        ).body
        links = hyperlinks_to_chapter_list(element, "https://ex.com/", is_likely_chapter_link)
        self.assertEqual(links, [])

    def test_without_predicate_every_link_is_kept(self):
        element = page('<a href="/about">About</a><a href="/c/1">One</a>').body
        links = hyperlinks_to_chapter_list(element, "https://ex.com/")
        self.assertEqual(links, [("https://ex.com/about", "About"), ("https://ex.com/c/1", "One")])

    def test_is_likely_chapter_link(self):
        self.assertTrue(is_likely_chapter_link("https://ex.com/x", "Chapter One"))
        self.assertTrue(is_likely_chapter_link("https://ex.com/x", "Ch 12"))
        self.assertTrue(is_likely_chapter_link("https://ex.com/episode-a", "Go"))
        self.assertTrue(is_likely_chapter_link("https://ex.com/x", "Part Three"))
        self.assertTrue(is_likely_chapter_link("https://ex.com/x/7", "Next"))
        self.assertFalse(is_likely_chapter_link("https://ex.com/about", "About"))


class TestContentRegion(unittest.TestCase):
    def test_first_significant_selector_wins(self):
        doc = page(f"<article>Too short</article><div class='chapter-content'>{LONG_TEXT}</div>")
        region = default_locate_content_region(doc)
        self.assertEqual(region.name, "div")
        self.assertIn("stormy night", region.get_text())

    def test_region_is_a_copy(self):
        doc = page(f"<article><p>{LONG_TEXT}</p></article>")
        region = default_locate_content_region(doc)
        region.p.decompose()
        self.assertIsNotNone(doc.soup.article.p)

    def test_navigation_classed_region_is_rejected(self):
        doc = page(
            "<header>Site header</header>"
            f"<div class='content navbar'>{LONG_TEXT}</div>"
            "<footer>Footer</footer>"
        )
        region = default_locate_content_region(doc)
        self.assertEqual(region.name, "body")
        self.assertIsNone(region.find("header"))
        self.assertIsNone(region.find("footer"))

    def test_falls_back_to_body_without_furniture(self):
        doc = page("<nav>Home</nav><p>Short chapter.</p><aside class='sidebar'>Links</aside>")
        region = default_locate_content_region(doc)
        self.assertEqual(region.name, "body")
        self.assertEqual(region.get_text().strip(), "Short chapter.")
        self.assertIsNotNone(doc.soup.find("nav"))


class TestMetadataExtraction(unittest.TestCase):
    def test_title_sources_in_order(self):
        head = '<meta property="og:title" content=" OG Title "/><title>Doc Title</title>'
        self.assertEqual(default_extract_title(page("<h1>Heading</h1>", head)), "OG Title")
        self.assertEqual(default_extract_title(page("<h1>Heading</h1>", "<title>T</title>")), "Heading")
        self.assertEqual(default_extract_title(page("<h1> </h1>", "<title>Doc</title>")), "Doc")
        self.assertEqual(default_extract_title(page("<p>x</p>")), "Untitled Story")

    def test_author(self):
        self.assertEqual(
            default_extract_author(page("", '<meta name="author" content="Meta Writer"/>')),
            "Meta Writer")
        self.assertEqual(
            default_extract_author(page('<span class="story-author">Jo</span>')), "Jo")
        self.assertEqual(
            default_extract_author(page('<a rel="author" href="/u/1">Sam</a>')), "Sam")
        self.assertEqual(default_extract_author(page("")), "Unknown Author")

    def test_language(self):
        self.assertEqual(
            default_extract_language(page("", '<meta property="og:locale" content="en_US"/>')),
            "en-US")
        self.assertEqual(default_extract_language(page("", html_attrs=' lang="fr"')), "fr")
        self.assertEqual(default_extract_language(page("")), "en")

    def test_cover_url_is_absolute(self):
        head = '<meta property="og:image" content="/img/cover.jpg"/>'
        self.assertEqual(
            default_extract_cover_url(page("", head, url="https://ex.com/s/1")),
            "https://ex.com/img/cover.jpg")

    def test_cover_prefers_cover_alt_over_first_image(self):
        doc = page('<img src="banner.png"/><img alt="Book COVER" src="c.png"/>',
                   url="https://ex.com/s/")
        self.assertEqual(default_extract_cover_url(doc), "https://ex.com/s/c.png")

    def test_no_cover(self):
        self.assertIsNone(default_extract_cover_url(page("<p>x</p>")))

    def test_chapter_title_skips_blank_and_overlong(self):
        doc = page(f"<h1>  </h1><h2>{'x' * 250}</h2><h3>Chapter 5: Storm</h3>")
        self.assertEqual(default_extract_chapter_title(doc), "Chapter 5: Storm")
        self.assertIsNone(default_extract_chapter_title(page("<p>x</p>")))

    def test_subject_and_description(self):
        head = ('<meta name="keywords" content="fantasy, litrpg"/>'
                '<meta name="description" content="Plain description"/>')
        doc = page("", head)
        self.assertEqual(default_extract_subject(doc), "fantasy, litrpg")
        self.assertEqual(default_extract_description(doc), "Plain description")

        og = page("", head + '<meta property="og:description" content="OG description"/>')
        self.assertEqual(default_extract_description(og), "OG description")

    def test_extract_metadata(self):
        head = '<meta name="author" content="A. Writer"/><title>The Book</title>'
        meta = DEFAULT_STRATEGY.extract_metadata(page("", head, html_attrs=' lang="de"'))
        self.assertEqual(meta.source_url, "https://ex.com/story/")
        self.assertEqual(meta.title, "The Book")
        self.assertEqual(meta.author, "A. Writer")
        self.assertEqual(meta.language, "de")
        self.assertIsNone(meta.cover_url)


class TestStrategyRecord(unittest.TestCase):
    def test_variant_overrides_one_function(self):
        variant = replace(DEFAULT_STRATEGY, name="custom",
                          extract_title=lambda p: "Fixed")
        doc = page("<h1>Heading</h1>")
        self.assertEqual(variant.extract_title(doc), "Fixed")
        self.assertEqual(variant.extract_author(doc), "Unknown Author")
        self.assertEqual(DEFAULT_STRATEGY.extract_title(doc), "Heading")

    def test_strategy_is_frozen(self):
        with self.assertRaises(FrozenInstanceError):
            DEFAULT_STRATEGY.name = "other"

    def test_first_non_blank(self):
        self.assertEqual(first_non_blank(lambda: None, lambda: "  ", lambda: " v "), "v")
        self.assertIsNone(first_non_blank(lambda: None))


if __name__ == "__main__":
    unittest.main()
