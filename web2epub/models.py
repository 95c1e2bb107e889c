from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup

PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"
COMPLETE = "COMPLETE"
ERROR = "ERROR"


@dataclass(frozen=True)
class StoryMetadata:
    """
    Work-level metadata extracted from the root document.
    Edited only through dataclasses.replace() before packaging.
    """
    source_url: str
    title: str = "Untitled Story"
    author: str = "Unknown Author"
    language: str = "en"
    cover_url: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    series_name: Optional[str] = None
    series_index: Optional[str] = None
    identifier: Optional[str] = None

    @property
    def book_id(self) -> str:
        return self.identifier or self.source_url


@dataclass
class ChapterDescriptor:
    """
    One discovered chapter.
    Status moves PENDING -> IN_PROGRESS -> COMPLETE | ERROR within a pass.
    """
    source_url: str                     # Unique key within a ChapterList
    title: str                          # Link text, editable by the user
    index: int = 0                      # Dense ordinal position (0, 1, 2...)
    include: bool = True                # Selected for download
    status: str = PENDING
    error: Optional[str] = None         # Message of the last failure
    transient: bool = False             # Last failure is worth a retry
    title_edited: bool = False          # User renamed it; page titles don't win

    def mark_in_progress(self):
        if self.status != PENDING:
            raise ValueError(f"Cannot start chapter {self.index} from status {self.status}")
        self.status = IN_PROGRESS

    def mark_complete(self):
        if self.status != IN_PROGRESS:
            raise ValueError(f"Cannot complete chapter {self.index} from status {self.status}")
        self.status = COMPLETE
        self.error = None
        self.transient = False

    def mark_error(self, message: str, transient: bool = False):
        if self.status != IN_PROGRESS:
            raise ValueError(f"Cannot fail chapter {self.index} from status {self.status}")
        self.status = ERROR
        self.error = message
        self.transient = transient

    def reset(self):
        self.status = PENDING
        self.error = None
        self.transient = False

    @property
    def can_retry(self) -> bool:
        return self.status == ERROR and self.transient

    def __repr__(self):
        return (f"<Chapter {self.index}: '{self.title}' "
                f"Status={self.status} Include={self.include}>")


@dataclass
class ContentFragment:
    """Sanitized markup for one chapter, ready for the packager."""
    title: str
    source_url: str
    html: str
    is_error: bool = False


@dataclass
class Page:
    """A parsed document and the URL it was finally served from."""
    url: str
    soup: BeautifulSoup

    @classmethod
    def from_html(cls, markup: str, url: str) -> "Page":
        return cls(url=url, soup=BeautifulSoup(markup, "html.parser"))

    @property
    def body(self):
        return self.soup.body or self.soup
