"""Verification input settings, environment overrides and command-line parsing."""

from __future__ import annotations

import argparse
import os
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence, Type, TypeVar

DEFAULT_FROM_EMAIL = "user@example.com"
DEFAULT_HELLO_NAME = "gmail.com"
DEFAULT_SMTP_PORT = 25
DEFAULT_PROXY_PORT = 1080

_U64_MAX = 2**64 - 1
_PORT_MAX = 65535

_E = TypeVar("_E", bound=Enum)


class YahooVerifMethod(str, Enum):
    """How Yahoo addresses are verified."""

    API = "Api"
    HEADLESS = "Headless"
    SMTP = "Smtp"


class GmailVerifMethod(str, Enum):
    """How Gmail addresses are verified."""

    API = "Api"
    SMTP = "Smtp"


class HotmailVerifMethod(str, Enum):
    """How Hotmail addresses are verified."""

    API = "Api"
    HEADLESS = "Headless"
    SMTP = "Smtp"


def _parse_enum(enum_cls: Type[_E], text: str) -> _E:
    for member in enum_cls:
        if member.value.lower() == text.lower():
            return member
    choices = ", ".join(m.value for m in enum_cls)
    raise ValueError(f"unknown {enum_cls.__name__} {text!r}, expected one of {choices}")


def _parse_yahoo(text: str) -> YahooVerifMethod:
    return _parse_enum(YahooVerifMethod, text)


def _parse_gmail(text: str) -> GmailVerifMethod:
    return _parse_enum(GmailVerifMethod, text)


def _parse_hotmail(text: str) -> HotmailVerifMethod:
    return _parse_enum(HotmailVerifMethod, text)


def _parse_port(text: str) -> int:
    if not re.fullmatch(r"\d+", text) or int(text) > _PORT_MAX:
        raise ValueError(f"invalid port {text!r}")
    return int(text)


def _parse_bool(text: str) -> bool:
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError(f"invalid boolean {text!r}, expected true or false")


def _check_port(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _PORT_MAX:
        raise ValueError(f"invalid port {value!r}")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} should be a string")
    return value


def _decode_timeout(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return float(value.get("secs", 0)) + float(value.get("nanos", 0)) / 1e9
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
        return float(value)
    raise ValueError(f"invalid smtp_timeout {value!r}")


def _encode_timeout(value: Optional[float]) -> Optional[dict]:
    if value is None:
        return None
    secs = int(value)
    return {"secs": secs, "nanos": round((value - secs) * 1e9)}


@dataclass(frozen=True)
class CheckEmailInputProxy:
    """A SOCKS5 proxy used while verifying an address."""

    host: str
    port: int = DEFAULT_PROXY_PORT
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CheckEmailInputProxy":
        if not isinstance(data, Mapping):
            raise ValueError("proxy should be an object")
        for key in ("host", "port"):
            if key not in data:
                raise ValueError(f"proxy is missing field {key!r}")
        host = data["host"]
        if not isinstance(host, str):
            raise ValueError("proxy host should be a string")
        username = _optional_str(data, "username")
        password = _optional_str(data, "password")
        return cls(
            host=host,
            port=_check_port(data["port"]),
            username=username,
            password=password,
        )

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
        }


@dataclass(frozen=True)
class CheckEmailInput:
    """Everything needed to verify one e-mail address."""

    to_email: str = ""
    from_email: str = DEFAULT_FROM_EMAIL
    hello_name: str = DEFAULT_HELLO_NAME
    proxy: Optional[CheckEmailInputProxy] = None
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_timeout: Optional[float] = None
    yahoo_verif_method: YahooVerifMethod = YahooVerifMethod.HEADLESS
    gmail_verif_method: GmailVerifMethod = GmailVerifMethod.SMTP
    hotmail_verif_method: HotmailVerifMethod = HotmailVerifMethod.HEADLESS
    check_gravatar: bool = False
    haveibeenpwned_api_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CheckEmailInput":
        """Build an input from a decoded JSON object; missing keys take defaults."""
        if not isinstance(data, Mapping):
            raise ValueError("input should be an object")
        defaults = cls()
        kwargs: dict = {}
        for key in ("to_email", "from_email", "hello_name"):
            if key in data:
                value = data[key]
                if not isinstance(value, str):
                    raise ValueError(f"{key} should be a string")
                kwargs[key] = value
        if data.get("proxy") is not None:
            kwargs["proxy"] = CheckEmailInputProxy.from_dict(data["proxy"])
        if "smtp_port" in data:
            kwargs["smtp_port"] = _check_port(data["smtp_port"])
        if "smtp_timeout" in data:
            kwargs["smtp_timeout"] = _decode_timeout(data["smtp_timeout"])
        for key, parse in (
            ("yahoo_verif_method", _parse_yahoo),
            ("gmail_verif_method", _parse_gmail),
            ("hotmail_verif_method", _parse_hotmail),
        ):
            if key in data:
                kwargs[key] = parse(str(data[key]))
        if "check_gravatar" in data:
            value = data["check_gravatar"]
            if not isinstance(value, bool):
                raise ValueError("check_gravatar should be a boolean")
            kwargs["check_gravatar"] = value
        field = "haveibeenpwned_api_key"
        if field in data:
            kwargs[field] = _optional_str(data, field)
        return replace(defaults, **kwargs)

    def to_dict(self) -> dict:
        return {
            "to_email": self.to_email,
            "from_email": self.from_email,
            "hello_name": self.hello_name,
            "proxy": self.proxy.to_dict() if self.proxy else None,
            "smtp_port": self.smtp_port,
            "smtp_timeout": _encode_timeout(self.smtp_timeout),
            "yahoo_verif_method": self.yahoo_verif_method.value,
            "gmail_verif_method": self.gmail_verif_method.value,
            "hotmail_verif_method": self.hotmail_verif_method.value,
            "check_gravatar": self.check_gravatar,
            "haveibeenpwned_api_key": self.haveibeenpwned_api_key,
        }

    def with_env_overrides(self, environ: Optional[Mapping[str, str]] = None) -> "CheckEmailInput":
        """Apply the server settings from the environment.

        The sender address, HELO name and SMTP timeout always come from
        RCH_FROM_EMAIL, RCH_HELLO_NAME and RCH_SMTP_TIMEOUT, falling back to
        the defaults when a variable is unset or unusable.
        """
        env = os.environ if environ is None else environ
        timeout_text = env.get("RCH_SMTP_TIMEOUT")
        smtp_timeout: Optional[float] = None
        if timeout_text is not None and re.fullmatch(r"\+?\d+", timeout_text):
            seconds = int(timeout_text)
            if seconds <= _U64_MAX:
                smtp_timeout = float(seconds)
        return replace(
            self,
            from_email=env.get("RCH_FROM_EMAIL", DEFAULT_FROM_EMAIL),
            hello_name=env.get("RCH_HELLO_NAME", DEFAULT_HELLO_NAME),
            smtp_timeout=smtp_timeout,
        )


_Converter = Callable[[str], Any]

_OPTIONS: tuple[tuple[str, _Converter, Optional[str], str], ...] = (
    ("from_email", str, DEFAULT_FROM_EMAIL, "The email to use in the `MAIL FROM:` SMTP command."),
    ("hello_name", str, DEFAULT_HELLO_NAME, "The name to use in the `EHLO:` SMTP command."),
    ("proxy_host", str, None, "Use the specified SOCKS5 proxy host to perform email verification."),
    ("proxy_port", _parse_port, str(DEFAULT_PROXY_PORT), "SOCKS5 proxy port, used with --proxy-host."),
    ("proxy_username", str, None, "SOCKS5 proxy username, used with --proxy-host."),
    ("proxy_password", str, None, "SOCKS5 proxy password, used with --proxy-host."),
    ("smtp_port", _parse_port, str(DEFAULT_SMTP_PORT), "The port to use for the SMTP request."),
    ("yahoo_verif_method", _parse_yahoo, "Headless", "How to verify Yahoo addresses: Api, Headless or Smtp."),
    ("gmail_verif_method", _parse_gmail, "Smtp", "How to verify Gmail addresses: Api or Smtp."),
    ("hotmail_verif_method", _parse_hotmail, "Headless", "How to verify Hotmail addresses: Api, Headless or Smtp."),
    ("check_gravatar", _parse_bool, "false", "Whether to check if a gravatar image exists for the email."),
    ("haveibeenpwned_api_key", str, None, "HaveIBeenPwned API key, ignored if not provided."),
)


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser; unset options resolve later from the environment."""
    parser = argparse.ArgumentParser(
        prog="reachcheck",
        description="Check if an email address exists without sending any email.",
    )
    for name, converter, default, help_text in _OPTIONS:
        env_name = name.upper()
        shown = f" [env: {env_name}]" + (f" [default: {default}]" if default is not None else "")
        parser.add_argument(
            "--" + name.replace("_", "-"),
            dest=name,
            type=converter,
            default=None,
            help=help_text + shown,
        )
    parser.add_argument("to_email", help="The email to check.")
    return parser


def parse_args(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CheckEmailInput:
    """Parse command-line arguments, with environment variables as fallback."""
    env = os.environ if environ is None else environ
    parser = build_parser()
    namespace = parser.parse_args(argv)
    values: dict = {}
    for name, converter, default, _ in _OPTIONS:
        value = getattr(namespace, name)
        if value is None:
            text = env.get(name.upper(), default)
            if text is not None:
                try:
                    value = converter(text)
                except ValueError as exc:
                    parser.error(f"invalid value for --{name.replace('_', '-')}: {exc}")
        values[name] = value

    proxy = None
    if values["proxy_host"] is not None:
        proxy = CheckEmailInputProxy(
            host=values["proxy_host"],
            port=values["proxy_port"],
            username=values["proxy_username"],
            password=values["proxy_password"],
        )
    return CheckEmailInput(
        to_email=namespace.to_email,
        from_email=values["from_email"],
        hello_name=values["hello_name"],
        proxy=proxy,
        smtp_port=values["smtp_port"],
        yahoo_verif_method=values["yahoo_verif_method"],
        gmail_verif_method=values["gmail_verif_method"],
        hotmail_verif_method=values["hotmail_verif_method"],
        check_gravatar=values["check_gravatar"],
        haveibeenpwned_api_key=values["haveibeenpwned_api_key"],
    )