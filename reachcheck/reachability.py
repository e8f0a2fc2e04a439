"""Reachability verdicts and MX host selection."""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from .rules import Rule, RuleSet


class Reachable(str, Enum):
    """How confident we are that mail to an address is delivered."""

    SAFE = "safe"
    RISKY = "risky"
    INVALID = "invalid"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SmtpDetails:
    """What the SMTP conversation revealed about a mailbox."""

    can_connect_smtp: bool = False
    has_full_inbox: bool = False
    is_catch_all: bool = False
    is_deliverable: bool = False
    is_disabled: bool = False


@dataclass(frozen=True)
class MxRecord:
    """One MX record: a mail exchanger and its preference."""

    preference: int
    exchange: str


def calculate_reachable(misc: Any, smtp: Any) -> Reachable:
    """Combine misc and SMTP findings into a verdict.

    ``misc`` needs ``is_disposable`` and ``is_role_account``; ``smtp`` is
    an :class:`SmtpDetails`, or anything else when the SMTP check failed.
    """
    if not isinstance(smtp, SmtpDetails):
        return Reachable.UNKNOWN
    if misc.is_disposable or misc.is_role_account or smtp.is_catch_all or smtp.has_full_inbox:
        return Reachable.RISKY
    if not smtp.is_deliverable or not smtp.can_connect_smtp or smtp.is_disabled:
        return Reachable.INVALID
    return Reachable.SAFE


def choose_mx_host(
    records: Iterable[MxRecord],
    domain: str,
    rules: Optional[RuleSet] = None,
    rng: Optional[random.Random] = None,
) -> MxRecord:
    """Pick the MX record to contact.

    Honey-pot hosts are dropped and the rest sorted by preference. With
    three or more left, a random one that is neither first nor last is
    taken, since dummy records tend to sit at either end; otherwise the
    last one is used.
    """
    candidates = sorted(
        (
            record
            for record in records
            if rules is None or not rules.has_rule(domain, record.exchange, Rule.HONEY_POT)
        ),
        key=lambda record: record.preference,
    )
    if not candidates:
        raise ValueError(f"no usable MX record for {domain!r}")
    if len(candidates) >= 3:
        chooser = rng if rng is not None else random
        return candidates[chooser.randrange(1, len(candidates) - 1)]
    return candidates[-1]