import json
import random
from types import SimpleNamespace

import pytest

from reachcheck.reachability import (
    MxRecord,
    Reachable,
    SmtpDetails,
    calculate_reachable,
    choose_mx_host,
)
from reachcheck.rules import RuleSet

CLEAN = SimpleNamespace(is_disposable=False, is_role_account=False)
GOOD_SMTP = SmtpDetails(can_connect_smtp=True, is_deliverable=True)


def _misc(**overrides):
    values = {"is_disposable": False, "is_role_account": False}
    values.update(overrides)
    return SimpleNamespace(**values)


def test_reachable_serialises_lowercase():
    assert Reachable.INVALID.value == "invalid"
    assert Reachable("safe") is Reachable.SAFE


def test_safe():
    assert calculate_reachable(CLEAN, GOOD_SMTP) is Reachable.SAFE


@pytest.mark.parametrize(
    "misc, smtp",
    [
        (_misc(is_disposable=True), GOOD_SMTP),
        (_misc(is_role_account=True), GOOD_SMTP),
        (CLEAN, SmtpDetails(can_connect_smtp=True, is_deliverable=True, is_catch_all=True)),
        (CLEAN, SmtpDetails(can_connect_smtp=True, is_deliverable=True, has_full_inbox=True)),
    ],
)
def test_risky(misc, smtp):
    assert calculate_reachable(misc, smtp) is Reachable.RISKY


@pytest.mark.parametrize(
    "smtp",
    [
        SmtpDetails(can_connect_smtp=True, is_deliverable=False),
        SmtpDetails(can_connect_smtp=False, is_deliverable=True),
        SmtpDetails(can_connect_smtp=True, is_deliverable=True, is_disabled=True),
        SmtpDetails(),
    ],
)
def test_invalid(smtp):
    assert calculate_reachable(CLEAN, smtp) is Reachable.INVALID


def test_risky_takes_precedence_over_invalid():
    smtp = SmtpDetails(is_catch_all=True)
    assert calculate_reachable(CLEAN, smtp) is Reachable.RISKY


@pytest.mark.parametrize("smtp", [None, ConnectionError("refused")])
def test_unknown_when_smtp_failed(smtp):
    assert calculate_reachable(_misc(is_disposable=True), smtp) is Reachable.UNKNOWN


def _records(*preferences):
    return [MxRecord(p, f"mx{p}.example.com") for p in preferences]


@pytest.mark.parametrize("seed", range(20))
def test_middle_record_chosen_when_three_or_more(seed):
    records = _records(30, 10, 50, 20, 40)
    chosen = choose_mx_host(records, "example.com", rng=random.Random(seed))
    preferences = [r.preference for r in records]
    assert chosen in records
    assert min(preferences) < chosen.preference < max(preferences)


def test_three_records_pick_the_middle_one():
    records = _records(20, 30, 10)
    assert choose_mx_host(records, "example.com").preference == 20


def test_two_records_pick_highest_preference_value():
    records = _records(5, 1)
    assert choose_mx_host(records, "example.com") == records[0]


def test_single_record():
    records = _records(7)
    assert choose_mx_host(records, "example.com") == records[0]


def _rules(by_domain=None, by_mx=None):
    return RuleSet.from_json(
        json.dumps({"by_domain": by_domain or {}, "by_mx": by_mx or {}, "by_mx_suffix": {}})
    )


def test_honey_pot_hosts_skipped():
    records = _records(1, 2, 3)
    rules = _rules(by_mx={"mx2.example.com": {"rules": ["HoneyPot"]}})
    chosen = choose_mx_host(records, "example.com", rules, random.Random(0))
    assert chosen == records[2]


def test_no_records_raises():
    with pytest.raises(ValueError):
        choose_mx_host([], "example.com")


def test_honey_pot_domain_leaves_nothing():
    rules = _rules(by_domain={"example.com": {"rules": ["HoneyPot"]}})
    with pytest.raises(ValueError):
        choose_mx_host(_records(1, 2, 3), "example.com", rules)