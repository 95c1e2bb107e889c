"""
Cleanup pipeline that turns a third-party content region into an
embeddable XHTML fragment.

Every pass collects its targets into a list first and mutates afterwards.
The passes run in a fixed order; later ones rely on the earlier cleanup.
No pass removes an element that contains an image, and no pass reorders
surviving content, so running the pipeline twice changes nothing.
"""
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .utils import get_logger

logger = get_logger("Sanitizer")

IMAGE_TAGS = ["img", "image"]

EXECUTABLE_SELECTOR = "script, noscript, style, iframe, frame, object, embed, input"

BOILERPLATE_SELECTOR = (
    "div.sharedaddy, div.wpcnt, ul.post-categories, div.mistape_caption, "
    "div.wpulike, div.wp-next-post-navi, .ezoic-adpicker-ad, .ezoic-ad, "
    "ins.adsbygoogle, div.sharepost"
)

FURNITURE_SELECTOR = (
    "nav, header, footer, aside, .navigation, .nav, .menu, "
    ".sidebar, .ads, .advertisement, .social-share, .comments, "
    ".comment-section, .related-posts"
)

# tag -> (replacement tag, style it carries)
LEGACY_REPLACEMENTS = {
    "center": ("p", "text-align: center;"),
    "u": ("span", "text-decoration: underline;"),
    "s": ("span", "text-decoration: line-through;"),
    "strike": ("span", "text-decoration: line-through;"),
}

INLINE_WRAPPERS = ["span", "font"]

BLOCK_CONTAINERS = ["div", "p", "section", "article", "blockquote", "figure"]

PRESERVED_WHITESPACE_TAGS = ["pre", "textarea"]


def has_image(element) -> bool:
    if not isinstance(element, Tag):
        return False
    return element.name in IMAGE_TAGS or element.find(IMAGE_TAGS) is not None


def has_content(element) -> bool:
    """True if the element holds any text or image."""
    return has_image(element) or bool(element.get_text().strip())


def _all_tags(root: Tag) -> list:
    return [root] + root.find_all(True)


def _remove_all(elements):
    for element in elements:
        if element.decomposed:
            continue
        if has_image(element):
            logger.debug(f"Keeping <{element.name}> because it holds an image")
            continue
        element.decompose()


def remove_executable(root: Tag):
    _remove_all(root.select(EXECUTABLE_SELECTOR))
    for tag in _all_tags(root):
        handlers = [name for name in tag.attrs if name.lower().startswith("on")]
        for name in handlers:
            del tag[name]


def remove_comments(root: Tag):
    comments = root.find_all(string=lambda s: isinstance(s, Comment))
    for comment in comments:
        comment.extract()


def remove_boilerplate(root: Tag):
    _remove_all(root.select(BOILERPLATE_SELECTOR))


def remove_furniture(root: Tag):
    _remove_all(root.select(FURNITURE_SELECTOR))


def replace_legacy_elements(root: Tag):
    for tag in root.find_all(list(LEGACY_REPLACEMENTS)):
        name, style = LEGACY_REPLACEMENTS[tag.name]
        existing = tag.get("style")
        tag.name = name
        tag["style"] = f"{style} {existing}" if existing else style


def remove_empty_attributes(root: Tag):
    for tag in _all_tags(root):
        empty = []
        for name, value in tag.attrs.items():
            text = " ".join(value) if isinstance(value, list) else value
            if text is None or not text.strip():
                empty.append(name)
        for name in empty:
            del tag[name]


def unwrap_bare_inline(root: Tag):
    for tag in root.find_all(INLINE_WRAPPERS):
        if not tag.attrs:
            tag.unwrap()


def remove_empty_blocks(root: Tag):
    # Deepest first, so a parent sees its children already gone
    for tag in reversed(root.find_all(BLOCK_CONTAINERS)):
        if tag.decomposed:
            continue
        if not has_content(tag):
            tag.decompose()


def _is_whitespace_node(node) -> bool:
    if isinstance(node, Comment):
        return True
    if isinstance(node, NavigableString):
        return not node.strip()
    if isinstance(node, Tag):
        return not has_content(node)
    return False


def trim_whitespace(root: Tag):
    while root.contents and _is_whitespace_node(root.contents[0]):
        root.contents[0].extract()
    while root.contents and _is_whitespace_node(root.contents[-1]):
        root.contents[-1].extract()


def collapse_whitespace(root: Tag):
    """
    Merges neighbouring strings left behind by removals and reduces
    whitespace-only runs holding a line break to a single newline, the
    form html.parser gives them on the next parse.
    """
    root.smooth()
    runs = [s for s in root.find_all(string=True)
            if type(s) is NavigableString and "\n" in s and not s.strip() and s != "\n"]
    for run in runs:
        if run.find_parent(PRESERVED_WHITESPACE_TAGS) is None:
            run.replace_with("\n")


PASSES = [
    remove_executable,
    remove_comments,
    remove_boilerplate,
    remove_furniture,
    replace_legacy_elements,
    remove_empty_attributes,
    unwrap_bare_inline,
    remove_empty_blocks,
    trim_whitespace,
    collapse_whitespace,
]


def sanitize(root: Tag) -> Tag:
    """Runs every pass over root in place and returns it."""
    for cleanup in PASSES:
        cleanup(root)
    return root


def sanitize_html(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    return str(sanitize(soup))
