from dataclasses import dataclass
from typing import Optional

import requests

from .config import DEFAULT_USER_AGENT
from .errors import RetrievalError
from .utils import get_logger, is_http_url

logger = get_logger("Fetcher")

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Upgrade-Insecure-Requests": "1",
}


@dataclass
class FetchResult:
    content: str
    final_url: str
    status_code: int


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class HttpFetcher:
    """
    Fetches one URL per call through a shared requests.Session.
    Every failure is raised as RetrievalError, flagged transient when a
    later retry could succeed (timeouts, dropped connections, 429, 5xx).
    """

    def __init__(self, timeout: float = 30.0, user_agent: str = DEFAULT_USER_AGENT,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(BROWSER_HEADERS)
        self.session.headers["User-Agent"] = user_agent

    def fetch(self, url: str) -> FetchResult:
        if not is_http_url(url):
            raise RetrievalError(url, f"Malformed URL: {url}")

        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RetrievalError(url, f"Timed out after {self.timeout}s", transient=True) from e
        except requests.exceptions.ConnectionError as e:
            raise RetrievalError(url, f"Connection failed: {e}", transient=True) from e
        except requests.exceptions.RequestException as e:
            raise RetrievalError(url, f"Request failed: {e}") from e

        status = response.status_code
        if not 200 <= status < 300:
            raise RetrievalError(
                url,
                f"HTTP {status}: {response.reason}",
                transient=is_transient_status(status),
                status_code=status,
            )

        # Without a declared charset requests assumes ISO-8859-1 for text/html
        if "charset" not in response.headers.get("Content-Type", "").lower():
            response.encoding = response.apparent_encoding

        return FetchResult(content=response.text, final_url=response.url, status_code=status)

    def close(self):
        self.session.close()
