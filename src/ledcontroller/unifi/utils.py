"""Logging, TLS-warning and MAC helpers shared by the controller client."""

from __future__ import annotations

import os
import sys
import warnings
from pathlib import Path
from typing import Any

from loguru import logger
from urllib3.exceptions import InsecureRequestWarning

TRUTHY = frozenset({"1", "true", "yes", "on"})
DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = "7 days"

_LOGGER_CONFIGURED = False


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUTHY


def _format_record(record: dict[str, Any]) -> str:
    # Bound context (device_id, schedule_id, ...) is appended only when present.
    template = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan> - <level>{message}</level>"
    )
    if record["extra"]:
        template += " <dim>{extra}</dim>"
    return template + "\n{exception}"


def configure_logging(*, force: bool = False) -> None:
    """Install the stderr sink and, when ``LEDCTL_LOG_FILE`` is set, a rotating file sink.

    Level and diagnose mode come from ``LEDCTL_LOG_LEVEL`` and
    ``LEDCTL_LOG_DIAGNOSE``. The file sink rotates at ``LEDCTL_LOG_ROTATION``
    and keeps ``LEDCTL_LOG_RETENTION`` worth of old files, which suits the
    long-running ``ledctl --run`` daemon.
    """
    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED and not force:
        return

    level = os.getenv("LEDCTL_LOG_LEVEL", "INFO").strip().upper() or "INFO"
    diagnose = env_flag("LEDCTL_LOG_DIAGNOSE")

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=_format_record,
        backtrace=False,
        diagnose=diagnose,
        colorize=sys.stderr.isatty(),
    )

    log_file = os.getenv("LEDCTL_LOG_FILE", "").strip()
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            level=level,
            format=_format_record,
            rotation=os.getenv("LEDCTL_LOG_ROTATION", DEFAULT_LOG_ROTATION),
            retention=os.getenv("LEDCTL_LOG_RETENTION", DEFAULT_LOG_RETENTION),
            encoding="utf-8",
            backtrace=False,
            diagnose=diagnose,
            colorize=False,
        )

    _LOGGER_CONFIGURED = True


def suppress_insecure_request_warning(verify_ssl: bool) -> None:
    """Hide urllib3's per-request warning once the relaxed TLS profile is chosen.

    Controllers commonly ship self-signed certificates, so a user who opted
    into ``accept_invalid_certificates`` would otherwise get one warning per
    request.
    """
    if verify_ssl:
        return

    warnings.filterwarnings(
        "ignore",
        category=InsecureRequestWarning,
        message="Unverified HTTPS request",
    )


def normalize_mac(mac: str | None) -> str:
    """Return a lower-case, whitespace-free MAC address."""
    if not mac:
        return ""
    return mac.strip().lower()


configure_logging()

__all__ = [
    "TRUTHY",
    "env_flag",
    "configure_logging",
    "suppress_insecure_request_warning",
    "normalize_mac",
    "logger",
]
