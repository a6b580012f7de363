"""Configuration helpers for the UniFi LED controller."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .utils import configure_logging, env_flag, logger

DEFAULT_SITE = "default"
DEFAULT_DATA_DIR = "~/.config/ledcontroller"
LOGGING_PREFIX = "LEDCTL_LOG_"


def _parse_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.bind(variable=name, value=raw).warning(
            "Ignoring non-numeric setting; using default {}", default
        )
        return default


def _candidate_env_paths(start: Path) -> Iterable[Path]:
    """Yield plausible .env locations from closest to farthest."""
    override = os.environ.get("LEDCTL_ENV_FILE")
    if override:
        yield Path(override).expanduser()

    for directory in (start, *start.parents):
        yield directory / ".env"


def _discover_env_path() -> Path | None:
    package_dir = Path(__file__).resolve().parent
    for candidate in _candidate_env_paths(package_dir):
        if candidate.exists():
            return candidate
    return None


def _unquote(value: str) -> str:
    if value[:1] in {'"', "'"}:
        end = value.find(value[0], 1)
        if end != -1:
            return value[1:end]
    # Unquoted values may carry a trailing " # comment".
    return value.split(" #", 1)[0].rstrip()


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines, accepting ``export`` prefixes and quoted values.

    Blank lines, comments and lines without ``=`` are skipped; later
    assignments of the same key win.
    """
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        values[key] = _unquote(value.strip())
    return values


def _load_env_file(path: Path | None = None) -> list[str]:
    """Copy .env values into os.environ and return the keys that were applied."""
    env_path = path or _discover_env_path()
    if env_path is None or not env_path.exists():
        logger.debug("No .env file discovered for configuration")
        return []

    applied: list[str] = []
    for key, value in parse_env_file(env_path).items():
        # Existing environment variables win over the file.
        if key not in os.environ:
            os.environ[key] = value
            applied.append(key)

    if any(key.startswith(LOGGING_PREFIX) for key in applied):
        configure_logging(force=True)
    logger.bind(path=str(env_path), variables=len(applied)).info(
        "Loaded environment variables from .env"
    )
    return applied


_load_env_file()


@dataclass(frozen=True)
class Settings:
    """Typed accessors for configuration derived from the environment."""

    unifi_base_url: str | None
    unifi_site: str
    unifi_username: str
    unifi_password: str
    accept_invalid_certificates: bool
    data_dir: Path
    timezone: str | None
    refresh_delay: float
    wake_poll_interval: float
    wake_threshold: float

    @classmethod
    def from_env(cls) -> Settings:
        base_url = os.environ.get("UNIFI_BASE_URL", "").strip() or None
        site = os.environ.get("UNIFI_SITE", "").strip() or DEFAULT_SITE
        accept_invalid = env_flag("UNIFI_ACCEPT_INVALID_CERTS")
        data_dir = Path(
            os.environ.get("LEDCTL_DATA_DIR", DEFAULT_DATA_DIR)
        ).expanduser()

        settings = cls(
            unifi_base_url=base_url,
            unifi_site=site,
            unifi_username=os.environ.get("UNIFI_USERNAME", ""),
            unifi_password=os.environ.get("UNIFI_PASSWORD", ""),
            accept_invalid_certificates=accept_invalid,
            data_dir=data_dir,
            timezone=os.environ.get("LEDCTL_TIMEZONE", "").strip() or None,
            refresh_delay=_parse_float("LEDCTL_REFRESH_DELAY", 1.0),
            wake_poll_interval=_parse_float("LEDCTL_WAKE_POLL_INTERVAL", 30.0),
            wake_threshold=_parse_float("LEDCTL_WAKE_THRESHOLD", 5.0),
        )

        logger.bind(
            base_url=base_url,
            site=site,
            accept_invalid_certificates=accept_invalid,
            data_dir=str(data_dir),
        ).info("Configuration loaded from environment")
        if base_url is None:
            logger.warning("UNIFI_BASE_URL is not set; controller is unconfigured")

        return settings


settings = Settings.from_env()
