import json
import pathlib
from dataclasses import asdict, dataclass, fields
from typing import Optional

from .errors import ConfigurationError
from .utils import get_logger

logger = get_logger("Config")

CONFIG_PATH = pathlib.Path.home() / ".web2epub.json"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


@dataclass
class JobOptions:
    min_interval: float = 2.0           # Seconds between requests to one host
    max_chapters: int = 1000            # Largest selection accepted per job
    abort_on_failure: bool = False      # Stop the batch at the first failed chapter
    package_on_cancel: bool = True      # Package what was fetched before a cancel
    stylesheet: Optional[str] = None    # CSS text; None means the built-in sheet
    request_timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT

    def validate(self):
        if self.min_interval < 0:
            raise ConfigurationError(f"min_interval must be >= 0, got {self.min_interval}")
        if self.max_chapters < 1:
            raise ConfigurationError(f"max_chapters must be >= 1, got {self.max_chapters}")
        if self.request_timeout <= 0:
            raise ConfigurationError(f"request_timeout must be > 0, got {self.request_timeout}")
        return self


def _coerce(name: str, value, default):
    """Checks a config value against the type of its default."""
    if name == "stylesheet":
        if value is None or isinstance(value, str):
            return value
        raise ConfigurationError(f"Config key '{name}' must be a string")
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ConfigurationError(f"Config key '{name}' must be true or false")
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"Config key '{name}' must be a number")
        if isinstance(default, int) and not isinstance(default, bool):
            if value != int(value):
                raise ConfigurationError(f"Config key '{name}' must be a whole number")
            return int(value)
        return float(value)
    if isinstance(value, str):
        return value
    raise ConfigurationError(f"Config key '{name}' must be a string")


def load_options(path: pathlib.Path = CONFIG_PATH) -> JobOptions:
    """
    Reads JobOptions from a JSON object file.
    Missing or unreadable files fall back to the defaults.
    """
    defaults = JobOptions()
    if not path.exists():
        return defaults

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to read config {path}: {e}")
        return defaults

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse config {path}: {e}")
        return defaults

    if not isinstance(data, dict):
        logger.warning(f"Config file {path} is not a JSON object.")
        return defaults

    known = {f.name for f in fields(JobOptions)}
    values = {}
    for key, value in data.items():
        if key not in known:
            logger.debug(f"Ignoring unknown config key '{key}'")
            continue
        values[key] = _coerce(key, value, getattr(defaults, key))

    return JobOptions(**values).validate()


def save_options(path: pathlib.Path, options: JobOptions):
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(
        json.dumps(asdict(options), indent=2, sort_keys=True),
        encoding="utf-8",
    )
    tmp_path.replace(path)
    logger.info(f"Saved config to {path}")
