"""Provider- and domain-specific verification rules read from JSON."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Union


class Rule(Enum):
    """A special treatment applied to a domain or MX host."""

    SKIP_CATCH_ALL = "SkipCatchAll"
    SMTP_TIMEOUT_45S = "SmtpTimeout45s"
    HONEY_POT = "HoneyPot"


_SECTIONS = ("by_domain", "by_mx", "by_mx_suffix")


def _parse_section(name: str, section: Any) -> Dict[str, FrozenSet[Rule]]:
    if not isinstance(section, dict):
        raise ValueError(f"{name} should be an object")
    parsed: Dict[str, FrozenSet[Rule]] = {}
    for key, entry in section.items():
        if not isinstance(entry, dict) or not isinstance(entry.get("rules"), list):
            raise ValueError(f"{name}.{key} should be an object with a rules list")
        try:
            parsed[key] = frozenset(Rule(value) for value in entry["rules"])
        except ValueError as exc:
            raise ValueError(f"{name}.{key}: {exc}") from None
    return parsed


@dataclass
class RuleSet:
    """Rules keyed by e-mail domain, exact MX host, and MX host suffix."""

    by_domain: Dict[str, FrozenSet[Rule]] = field(default_factory=dict)
    by_mx: Dict[str, FrozenSet[Rule]] = field(default_factory=dict)
    by_mx_suffix: Dict[str, FrozenSet[Rule]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "RuleSet":
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("rules document should be an object")
        missing = [name for name in _SECTIONS if name not in data]
        if missing:
            raise ValueError(f"rules document is missing {', '.join(missing)}")
        return cls(**{name: _parse_section(name, data[name]) for name in _SECTIONS})

    def _domain_has(self, domain: str, rule: Rule) -> bool:
        return rule in self.by_domain.get(domain, frozenset())

    def _mx_has(self, host: str, rule: Rule) -> bool:
        return rule in self.by_mx.get(host, frozenset())

    def _mx_suffix_has(self, host: str, rule: Rule) -> bool:
        # Only the first suffix that matches decides.
        for suffix, rules in self.by_mx_suffix.items():
            if host.endswith(suffix):
                return rule in rules
        return False

    def has_rule(self, domain: str, host: str, rule: Rule) -> bool:
        """Whether the domain or the MX host carries the given rule."""
        return (
            self._domain_has(domain, rule)
            or self._mx_has(host, rule)
            or self._mx_suffix_has(host, rule)
        )


def load_rules(path: Union[str, Path]) -> RuleSet:
    """Read a rule set from a JSON file."""
    return RuleSet.from_json(Path(path).read_text(encoding="utf-8"))