import io
import pathlib
import re
import zipfile
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from html import escape
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, ProcessingInstruction
from ebooklib import epub

from .errors import PackagingError
from .models import ContentFragment, StoryMetadata
from .utils import get_logger

logger = get_logger("Packager")

MIMETYPE = "application/epub+zip"
OPF_NS = "http://www.idpf.org/2007/opf"

CONTAINER_XML = """<?xml version="1.0" encoding="utf-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
    <rootfiles>
        <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
    </rootfiles>
</container>
"""

DEFAULT_STYLESHEET = """body {
    font-family: Georgia, serif;
    line-height: 1.6;
    margin: 1em;
    color: #333;
}

h1, h2, h3, h4, h5, h6 {
    color: #2c3e50;
    margin-top: 1.5em;
    margin-bottom: 0.5em;
}

h1 {
    font-size: 1.8em;
    border-bottom: 2px solid #3498db;
    padding-bottom: 0.3em;
}

p {
    margin: 1em 0;
    text-align: justify;
}

img {
    max-width: 100%;
    height: auto;
    display: block;
    margin: 1em auto;
}

blockquote {
    margin: 1em 2em;
    padding: 0.5em 1em;
    border-left: 4px solid #3498db;
    background-color: #f8f9fa;
    font-style: italic;
}

pre {
    background-color: #f1f2f6;
    padding: 1em;
    overflow-x: auto;
}

a {
    color: #3498db;
    text-decoration: none;
}

.chapter-error {
    border: 1px solid #e74c3c;
    padding: 0.75em;
    margin: 1em 0;
}
"""

CHAPTER_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="{language}" lang="{language}">
<head>
    <title>{title}</title>
    <link rel="stylesheet" type="text/css" href="../Styles/stylesheet.css"/>
</head>
<body>
    <h1>{title}</h1>
{content}
</body>
</html>
"""

NAV_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{language}" lang="{language}">
<head>
    <title>Table of Contents</title>
    <link rel="stylesheet" type="text/css" href="Styles/stylesheet.css"/>
</head>
<body>
    <nav epub:type="toc" id="toc">
        <h1>Table of Contents</h1>
        <ol>
{entries}
        </ol>
    </nav>
</body>
</html>
"""

OPF_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
    <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
{metadata}
    </metadata>
    <manifest>
{manifest}
    </manifest>
    <spine>
{spine}
    </spine>
</package>
"""

# Characters XML 1.0 does not allow, even escaped
XML_ILLEGAL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")

XML_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9._-]*$")


def strip_illegal_xml_chars(text: str) -> str:
    return XML_ILLEGAL_CHARS.sub("", text)


def chapter_id(number: int) -> str:
    return f"chapter{number:03d}"


def chapter_href(number: int) -> str:
    return f"Text/Chapter{number:03d}.xhtml"


def to_xhtml_fragment(markup: str) -> str:
    """
    Re-serializes an HTML fragment so it can sit inside an XHTML body.
    Prefixed tags (Word's <o:p>) are unwrapped and attributes whose names
    are not plain XML names are dropped, since either would need a
    namespace declaration.
    """
    soup = BeautifulSoup(strip_illegal_xml_chars(markup), "html.parser")
    declarations = soup.find_all(
        string=lambda s: isinstance(s, (Comment, Declaration, Doctype, ProcessingInstruction)))
    for node in declarations:
        node.extract()

    for tag in soup.find_all(lambda t: not XML_NAME.match(t.name)):
        tag.unwrap()

    for tag in soup.find_all(True):
        invalid = [name for name in tag.attrs if not XML_NAME.match(name)]
        for name in invalid:
            del tag[name]

    return soup.decode(formatter="minimal")


def check_well_formed(name: str, document: str) -> ET.Element:
    try:
        return ET.fromstring(document.encode("utf-8"))
    except ET.ParseError as e:
        raise PackagingError(f"Generated {name} is not well-formed XML: {e}") from e


class EpubPacker:
    """
    Builds an EPUB 3 archive from ordered chapter fragments.

    Entries are written in a fixed order with 'mimetype' first and
    uncompressed. Pass modified to get byte-identical output across runs.
    """

    def __init__(self, metadata: StoryMetadata, stylesheet: Optional[str] = None,
                 modified: Optional[datetime] = None):
        self.metadata = metadata
        self.stylesheet = stylesheet or DEFAULT_STYLESHEET
        if modified is None:
            modified = datetime.now(timezone.utc)
        elif modified.tzinfo is None:
            modified = modified.replace(tzinfo=timezone.utc)
        self.modified = modified.astimezone(timezone.utc).replace(microsecond=0)

    @property
    def timestamp(self) -> str:
        return self.modified.strftime("%Y-%m-%dT%H:%M:%SZ")

    def assemble(self, fragments: Sequence[ContentFragment]) -> bytes:
        if not fragments:
            raise PackagingError("Cannot build an EPUB with no chapters.")

        chapters = [self.build_chapter(number, fragment)
                    for number, fragment in enumerate(fragments, start=1)]
        opf = self.build_opf(len(fragments))
        nav = self.build_nav(fragments)

        for number, document in enumerate(chapters, start=1):
            check_well_formed(chapter_href(number), document)
        check_well_formed("nav.xhtml", nav)
        self.check_opf(opf, len(fragments))

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            self._add(zf, "mimetype", MIMETYPE, zipfile.ZIP_STORED)
            self._add(zf, "META-INF/container.xml", CONTAINER_XML)
            self._add(zf, "OEBPS/content.opf", opf)
            self._add(zf, "OEBPS/nav.xhtml", nav)
            self._add(zf, "OEBPS/Styles/stylesheet.css", self.stylesheet)
            for number, document in enumerate(chapters, start=1):
                self._add(zf, f"OEBPS/{chapter_href(number)}", document)

        logger.info(f"Assembled EPUB with {len(chapters)} chapters.")
        return buffer.getvalue()

    def _add(self, zf: zipfile.ZipFile, name: str, data: str,
             compress_type: int = zipfile.ZIP_DEFLATED):
        info = zipfile.ZipInfo(name, date_time=self.modified.timetuple()[:6])
        info.compress_type = compress_type
        info.external_attr = 0o644 << 16
        zf.writestr(info, data.encode("utf-8"))

    def write(self, path: pathlib.Path, fragments: Sequence[ContentFragment]) -> pathlib.Path:
        """Assembles fully in memory, then moves the archive into place."""
        data = self.assemble(fragments)
        path = pathlib.Path(path)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise PackagingError(f"Failed to write {path}: {e}") from e

        logger.info(f"Wrote {path} ({len(data)} bytes)")
        return path

    # -- Documents --

    def build_chapter(self, number: int, fragment: ContentFragment) -> str:
        title = fragment.title.strip() or f"Chapter {number}"
        return CHAPTER_TEMPLATE.format(
            language=escape(self.metadata.language),
            title=escape(strip_illegal_xml_chars(title)),
            content=to_xhtml_fragment(fragment.html),
        )

    def build_nav(self, fragments: Sequence[ContentFragment]) -> str:
        entries = []
        for number, fragment in enumerate(fragments, start=1):
            title = fragment.title.strip() or f"Chapter {number}"
            entries.append(
                f'            <li><a href="{chapter_href(number)}">'
                f"{escape(strip_illegal_xml_chars(title))}</a></li>"
            )
        return NAV_TEMPLATE.format(
            language=escape(self.metadata.language),
            entries="\n".join(entries),
        )

    def build_opf(self, chapter_count: int) -> str:
        meta = self.metadata

        def text(value: str) -> str:
            return escape(strip_illegal_xml_chars(value))

        lines = [
            f'        <dc:identifier id="BookId">{text(meta.book_id)}</dc:identifier>',
            f"        <dc:title>{text(meta.title)}</dc:title>",
            f"        <dc:creator>{text(meta.author)}</dc:creator>",
            f"        <dc:language>{text(meta.language)}</dc:language>",
            f"        <dc:date>{self.timestamp}</dc:date>",
            f'        <meta property="dcterms:modified">{self.timestamp}</meta>',
        ]
        if meta.subject:
            lines.append(f"        <dc:subject>{text(meta.subject)}</dc:subject>")
        if meta.description:
            lines.append(f"        <dc:description>{text(meta.description)}</dc:description>")
        if meta.series_name:
            lines.append(f'        <meta name="calibre:series" content="{text(meta.series_name)}"/>')
            if meta.series_index:
                lines.append(
                    f'        <meta name="calibre:series_index" content="{text(meta.series_index)}"/>')

        manifest = [
            '        <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>',
            '        <item id="stylesheet" href="Styles/stylesheet.css" media-type="text/css"/>',
        ]
        spine = []
        for number in range(1, chapter_count + 1):
            manifest.append(
                f'        <item id="{chapter_id(number)}" href="{chapter_href(number)}" '
                f'media-type="application/xhtml+xml"/>'
            )
            spine.append(f'        <itemref idref="{chapter_id(number)}"/>')

        return OPF_TEMPLATE.format(
            metadata="\n".join(lines),
            manifest="\n".join(manifest),
            spine="\n".join(spine),
        )

    def check_opf(self, opf: str, chapter_count: int):
        root = check_well_formed("content.opf", opf)
        ns = {"opf": OPF_NS}
        items = [item.get("id") for item in root.findall("opf:manifest/opf:item", ns)
                 if item.get("href", "").startswith("Text/")]
        itemrefs = [ref.get("idref") for ref in root.findall("opf:spine/opf:itemref", ns)]

        if len(items) != chapter_count:
            raise PackagingError(f"Manifest lists {len(items)} chapters, expected {chapter_count}")
        if items != itemrefs:
            raise PackagingError("Spine does not match the manifest chapter items")

    # -- Verification --

    def verify(self, path: pathlib.Path, chapter_count: int) -> List[str]:
        """Re-opens the written archive with ebooklib and checks its spine."""
        try:
            book = epub.read_epub(str(path), options={"ignore_ncx": True})
        except Exception as e:
            raise PackagingError(f"EPUB at {path} could not be read back: {e}") from e

        spine = [idref for idref, _ in book.spine]
        if len(spine) != chapter_count:
            raise PackagingError(
                f"EPUB at {path} has {len(spine)} spine entries, expected {chapter_count}")

        logger.info(f"Verified {path}: {len(spine)} chapters in spine.")
        return spine
