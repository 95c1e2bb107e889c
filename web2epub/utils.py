import logging
import re
import sys
from typing import Optional
from urllib.parse import urlparse


def setup_logging(level=logging.INFO):
    """Configures the root logger with a standard format."""
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
        datefmt="%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str):
    return logging.getLogger(name)


def is_blank(s: Optional[str]) -> bool:
    return s is None or not s.strip()


def normalize_url_for_compare(url: str) -> str:
    """
    Canonical form used to detect duplicate chapter links.
    Drops the fragment, one trailing slash and the scheme, so
    'https://a.com/c/1/#top' and 'http://a.com/c/1' compare equal.
    """
    hash_index = url.find("#")
    if hash_index >= 0:
        url = url[:hash_index]
    if url.endswith("/"):
        url = url[:-1]
    scheme_index = url.find("://")
    if scheme_index >= 0:
        url = url[scheme_index + 3:]
    return url


def normalize_host(host: str) -> str:
    host = host.strip().lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def host_key(url: str) -> str:
    """Lower-cased hostname without 'www.', or '' if the URL has none."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return ""
    return normalize_host(host) if host else ""


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def safe_filename(title: str, max_length: int = 50) -> str:
    """
    ASCII-only file stem; long titles keep their head and tail around '...'.
    """
    if not title:
        return ""
    title = re.sub(r"[ \u00a0]", "_", title)
    title = re.sub(r"[^a-zA-Z0-9_-]+", "", title)
    ellipsis = "..."
    if len(title) > max_length:
        split_length = (max_length - len(ellipsis)) // 2
        return title[:split_length] + ellipsis + title[len(title) - split_length:]
    return title
