"""Bulk verification jobs: request parsing, per-address tasks and errors."""

from __future__ import annotations

import inspect
import os
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterator, List, Mapping, Optional, Tuple, TypeVar, Union

from .config import CheckEmailInput, CheckEmailInputProxy
from .reachability import Reachable

DEFAULT_SMTP_PORTS: Tuple[int, ...] = (25,)
DEFAULT_MIN_TASK_CONCURRENCY = 10
DEFAULT_MAX_CONCURRENT_TASK_FETCH = 20

_PORT_MAX = 65535

_T = TypeVar("_T")

Checker = Callable[[CheckEmailInput], Union[Any, Awaitable[Any]]]


class BulkError(Exception):
    """Base error of the bulk endpoints; answered as an internal server error."""

    status_code = 500


class EmptyInputError(BulkError):
    """A bulk request holds no address to verify."""

    def __init__(self, message: str = "bulk request input is empty") -> None:
        super().__init__(message)


class JobInProgressError(BulkError):
    """Results were requested for a job that is still running."""

    def __init__(self, message: str = "job is still in progress") -> None:
        super().__init__(message)


class CsvParseError(BulkError):
    """A stored result could not be turned into a CSV row."""


class NoDatabaseError(BulkError):
    """Bulk endpoints were used while no job store is configured."""

    status_code = 404

    def __init__(self, message: str = "bulk endpoints are not enabled") -> None:
        super().__init__(message)


def _check_port(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _PORT_MAX:
        raise ValueError(f"invalid port {value!r}")
    return value


def _ports(value: Any) -> List[int]:
    if not isinstance(value, list):
        raise ValueError("smtp_ports should be a list")
    return [_check_port(port) for port in value]


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} should be a string")
    return value


def _optional_proxy(data: Mapping[str, Any]) -> Optional[CheckEmailInputProxy]:
    value = data.get("proxy")
    return None if value is None else CheckEmailInputProxy.from_dict(value)


@dataclass(frozen=True)
class TaskInput:
    """One address of a bulk job, with the SMTP ports to try in order."""

    to_email: str
    smtp_ports: List[int] = field(default_factory=lambda: list(DEFAULT_SMTP_PORTS))
    proxy: Optional[CheckEmailInputProxy] = None
    hello_name: Optional[str] = None
    from_email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskInput":
        if not isinstance(data, Mapping):
            raise ValueError("task input should be an object")
        for key in ("to_email", "smtp_ports"):
            if key not in data:
                raise ValueError(f"task input is missing field {key!r}")
        to_email = data["to_email"]
        if not isinstance(to_email, str):
            raise ValueError("to_email should be a string")
        return cls(
            to_email=to_email,
            smtp_ports=_ports(data["smtp_ports"]),
            proxy=_optional_proxy(data),
            hello_name=_optional_str(data, "hello_name"),
            from_email=_optional_str(data, "from_email"),
        )

    def to_dict(self) -> dict:
        return {
            "to_email": self.to_email,
            "smtp_ports": list(self.smtp_ports),
            "proxy": self.proxy.to_dict() if self.proxy else None,
            "hello_name": self.hello_name,
            "from_email": self.from_email,
        }

    def check_inputs(self) -> Iterator[CheckEmailInput]:
        """One verification input per SMTP port, in the given order."""
        base = CheckEmailInput(to_email=self.to_email)
        if self.hello_name is not None:
            base = replace(base, hello_name=self.hello_name)
        if self.from_email is not None:
            base = replace(base, from_email=self.from_email)
        if self.proxy is not None:
            base = replace(base, proxy=self.proxy)
        for port in self.smtp_ports:
            yield replace(base, smtp_port=port)


@dataclass(frozen=True)
class CreateBulkRequest:
    """The body of a request creating a bulk job."""

    input_type: str
    input: List[str]
    proxy: Optional[CheckEmailInputProxy] = None
    hello_name: Optional[str] = None
    from_email: Optional[str] = None
    smtp_ports: Optional[List[int]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CreateBulkRequest":
        if not isinstance(data, Mapping):
            raise ValueError("request body should be an object")
        for key in ("input_type", "input"):
            if key not in data:
                raise ValueError(f"request body is missing field {key!r}")
        input_type = data["input_type"]
        if not isinstance(input_type, str):
            raise ValueError("input_type should be a string")
        emails = data["input"]
        if not isinstance(emails, list) or not all(isinstance(e, str) for e in emails):
            raise ValueError("input should be a list of strings")
        ports = data.get("smtp_ports")
        return cls(
            input_type=input_type,
            input=list(emails),
            proxy=_optional_proxy(data),
            hello_name=_optional_str(data, "hello_name"),
            from_email=_optional_str(data, "from_email"),
            smtp_ports=None if ports is None else _ports(ports),
        )

    def tasks(self) -> Iterator[TaskInput]:
        """The task of each address; raises EmptyInputError when there is none."""
        if not self.input:
            raise EmptyInputError()
        ports = list(self.smtp_ports) if self.smtp_ports is not None else list(DEFAULT_SMTP_PORTS)
        return (
            TaskInput(
                to_email=email,
                smtp_ports=list(ports),
                proxy=self.proxy,
                hello_name=self.hello_name,
                from_email=self.from_email,
            )
            for email in self.input
        )


def _is_unknown(output: Any) -> bool:
    if isinstance(output, Mapping):
        value = output.get("is_reachable")
    else:
        value = getattr(output, "is_reachable", None)
    return value == Reachable.UNKNOWN or value == Reachable.UNKNOWN.value


async def run_task(task_input: TaskInput, checker: Checker) -> Optional[Any]:
    """Verify a task's address, trying each port until the verdict is known.

    Returns the last output obtained, or ``None`` when no port was given.
    """
    final: Optional[Any] = None
    for check_input in task_input.check_inputs():
        output = checker(check_input)
        if inspect.isawaitable(output):
            output = await output
        final = output
        if not _is_unknown(output):
            break
    return final


def _usize(env: Mapping[str, str], name: str, default: int) -> int:
    text = env.get(name)
    if text is None:
        return default
    if not text.isascii() or not text.isdigit():
        raise ValueError(f"Environment variable {name} should parse to usize")
    return int(text)


def bulk_concurrency(environ: Optional[Mapping[str, str]] = None) -> Tuple[int, int]:
    """Minimum task concurrency and maximum concurrent task fetch."""
    env = os.environ if environ is None else environ
    return (
        _usize(env, "RCH_MINIMUM_TASK_CONCURRENCY", DEFAULT_MIN_TASK_CONCURRENCY),
        _usize(env, "RCH_MAXIMUM_CONCURRENT_TASK_FETCH", DEFAULT_MAX_CONCURRENT_TASK_FETCH),
    )


def require_db(store: Optional[_T]) -> _T:
    """Return the store, or raise NoDatabaseError when bulk is disabled."""
    if store is None:
        raise NoDatabaseError()
    return store