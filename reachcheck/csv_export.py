"""Flattening of stored verification results into CSV rows."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from .bulk import CsvParseError

CSV_HEADER: Tuple[str, ...] = (
    "input",
    "is_reachable",
    "misc.is_disposable",
    "misc.is_role_account",
    "misc.gravatar_url",
    "mx.accepts_mail",
    "smtp.can_connect",
    "smtp.has_full_inbox",
    "smtp.is_catch_all",
    "smtp.is_deliverable",
    "smtp.is_disabled",
    "syntax.is_valid_syntax",
    "syntax.domain",
    "syntax.username",
    "error",
)


def _as_object(value: Any, message: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise CsvParseError(message)
    return value


def _as_str(value: Any, message: str) -> str:
    if not isinstance(value, str):
        raise CsvParseError(message)
    return value


def _as_bool(value: Any, message: str) -> bool:
    if not isinstance(value, bool):
        raise CsvParseError(message)
    return value


def _json_text(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _cell(value: Union[str, bool, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


@dataclass(frozen=True)
class CsvRow:
    """The CSV view of one verification result.

    ``misc_gravatar_url`` and ``error`` hold the JSON text of the stored
    value, quotes included.
    """

    input: str = ""
    is_reachable: str = ""
    misc_is_disposable: bool = False
    misc_is_role_account: bool = False
    misc_gravatar_url: Optional[str] = None
    mx_accepts_mail: bool = False
    smtp_can_connect: bool = False
    smtp_has_full_inbox: bool = False
    smtp_is_catch_all: bool = False
    smtp_is_deliverable: bool = False
    smtp_is_disabled: bool = False
    syntax_is_valid_syntax: bool = False
    syntax_domain: str = ""
    syntax_username: str = ""
    error: Optional[str] = None

    @classmethod
    def from_json(cls, value: Any) -> "CsvRow":
        """Build a row from a decoded result; unknown fields are ignored."""
        top = _as_object(value, "Failed to find top level object")
        fields: dict = {}
        for key, val in top.items():
            if key == "input":
                fields["input"] = _as_str(val, "input should be a string")
            elif key == "is_reachable":
                fields["is_reachable"] = _as_str(val, "is_reachable should be a string")
            elif key == "misc":
                for sub, item in _as_object(val, "misc field should be an object").items():
                    if sub == "error":
                        fields["error"] = _json_text(item)
                    elif sub == "is_disposable":
                        fields["misc_is_disposable"] = _as_bool(item, "is_disposable should be a boolean")
                    elif sub == "is_role_account":
                        fields["misc_is_role_account"] = _as_bool(item, "is_role_account should be a boolean")
                    elif sub == "gravatar_url" and isinstance(item, str):
                        fields["misc_gravatar_url"] = _json_text(item)
            elif key == "mx":
                for sub, item in _as_object(val, "mx field should be an object").items():
                    if sub == "error":
                        fields["error"] = _json_text(item)
                    elif sub == "accepts_email":
                        fields["mx_accepts_mail"] = _as_bool(item, "accepts_email should be a boolean")
            elif key == "smtp":
                for sub, item in _as_object(val, "mx field should be an object").items():
                    if sub == "error":
                        fields["error"] = _json_text(item)
                    elif sub == "can_connect_smtp":
                        fields["smtp_can_connect"] = _as_bool(item, "can_connect_smtp should be a boolean")
                    elif sub == "has_full_inbox":
                        fields["smtp_has_full_inbox"] = _as_bool(item, "has_full_inbox should be a boolean")
                    elif sub == "is_catch_all":
                        fields["smtp_is_catch_all"] = _as_bool(item, "is_catch_all should be a boolean")
                    elif sub == "is_deliverable":
                        fields["smtp_is_deliverable"] = _as_bool(item, "is_deliverable should be a boolean")
                    elif sub == "is_disabled":
                        fields["smtp_is_disabled"] = _as_bool(item, "is_disabled should be a boolean")
            elif key == "syntax":
                for sub, item in _as_object(val, "syntax field should be an object").items():
                    if sub == "error":
                        fields["error"] = _json_text(item)
                    elif sub == "is_valid_syntax":
                        fields["syntax_is_valid_syntax"] = _as_bool(item, "is_valid_syntax should be a boolean")
                    elif sub == "username":
                        fields["syntax_username"] = _as_str(item, "username should be a string")
                    elif sub == "domain":
                        fields["syntax_domain"] = _as_str(item, "domain should be a string")
        return cls(**fields)

    def _cells(self) -> Tuple[str, ...]:
        return tuple(
            _cell(value)
            for value in (
                self.input,
                self.is_reachable,
                self.misc_is_disposable,
                self.misc_is_role_account,
                self.misc_gravatar_url,
                self.mx_accepts_mail,
                self.smtp_can_connect,
                self.smtp_has_full_inbox,
                self.smtp_is_catch_all,
                self.smtp_is_deliverable,
                self.smtp_is_disabled,
                self.syntax_is_valid_syntax,
                self.syntax_domain,
                self.syntax_username,
                self.error,
            )
        )


def write_csv(values: Iterable[Any]) -> str:
    """Render results as CSV; the header is written only before the first row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    header_written = False
    for value in values:
        row = value if isinstance(value, CsvRow) else CsvRow.from_json(value)
        if not header_written:
            writer.writerow(CSV_HEADER)
            header_written = True
        writer.writerow(row._cells())
    return buffer.getvalue()