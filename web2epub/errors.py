from typing import Optional


class Web2EpubError(RuntimeError):
    """Base class for every error raised by web2epub."""


class ChapterError(Web2EpubError):
    """A failure confined to one chapter; the job records it and moves on."""

    def __init__(self, url: str, message: str, transient: bool = False,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.transient = transient
        self.status_code = status_code


class RetrievalError(ChapterError):
    """Network failure, timeout or non-2xx response."""


class EmptyContentError(ChapterError):
    """The content region was found but holds no text or images."""


class PackagingError(Web2EpubError):
    """The archive could not be assembled consistently."""


class ConfigurationError(Web2EpubError):
    """Rejected before any network activity."""


class JobAbortedError(Web2EpubError):
    """The job stopped early and produced nothing to package."""

    def __init__(self, message: str, chapters=None):
        super().__init__(message)
        self.chapters = chapters
