"""Error reporting that skips known errors and redacts usernames."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

PACKAGE_VERSION = "0.1.0"

Capture = Callable[[dict], None]


class ErrorKind(Enum):
    """Which stage of a verification produced the error."""

    MISC = "MiscError"
    MX = "MxError"
    SMTP = "SmtpError"


@dataclass(frozen=True)
class ReportedError:
    """An error from a verification, as seen by the reporter.

    ``description`` is set for errors that are already understood;
    ``transient_message`` holds the server's lines for transient SMTP
    replies.
    """

    kind: ErrorKind
    value: str
    description: Optional[str] = None
    transient_message: Optional[Sequence[str]] = None


def redact(text: str, username: str) -> str:
    """Replace every occurrence of the username with ``***``."""
    return text.replace(username, "***")


def is_known_transient_error(message: Sequence[str]) -> bool:
    """Whether a transient SMTP reply just asks to retry later."""
    if not message:
        raise ValueError("SMTP reply has no lines")
    first_line = message[0].lower()
    return "try again" in first_line or "try later" in first_line


def backend_name(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """The backend name from RCH_BACKEND_NAME, or HEROKU_APP_NAME."""
    env = os.environ if environ is None else environ
    name = env.get("RCH_BACKEND_NAME")
    if name is not None:
        return name
    return env.get("HEROKU_APP_NAME")


def build_event(
    error: ReportedError,
    username: str,
    domain: str,
    result_text: str,
    environ: Optional[Mapping[str, str]] = None,
) -> dict:
    """Build the error event, with the username redacted everywhere."""
    return {
        "exception": {
            "values": [{"type": error.kind.value, "value": redact(error.value, username)}],
        },
        "level": "error",
        "environment": "production",
        "release": PACKAGE_VERSION,
        "message": redact(result_text, username),
        "server_name": backend_name(environ),
        "transaction": f"check_email:{domain}",
    }


def _log_capture(event: dict) -> None:
    logger.error("Captured error event: %s", event)


def log_unknown_errors(
    misc_error: Optional[ReportedError],
    mx_error: Optional[ReportedError],
    smtp_error: Optional[ReportedError],
    username: str,
    domain: str,
    result_text: str,
    capture: Optional[Capture] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[dict]:
    """Report the first unknown error of a verification.

    Misc and MX errors are always reported; SMTP errors only when they
    are neither described nor a known transient reply. Returns the event
    that was sent, if any.
    """
    send = capture if capture is not None else _log_capture
    error = misc_error or mx_error
    if error is None and smtp_error is not None:
        if smtp_error.description is not None:
            return None
        transient = smtp_error.transient_message
        if transient is not None and is_known_transient_error(transient):
            logger.debug("Transient error: %s", redact(transient[0], username))
            return None
        error = smtp_error
    if error is None:
        return None
    event = build_event(error, username, domain, result_text, environ)
    logger.debug("Sending error event: %s", event["exception"]["values"][0]["value"])
    send(event)
    return event