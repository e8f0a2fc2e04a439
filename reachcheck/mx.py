"""MX record lookups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import dns.asyncresolver
import dns.exception
import dns.resolver

from .reachability import MxRecord


class MxError(Exception):
    """An MX lookup that failed for a reason other than missing records."""

    IO_ERROR = "IoError"
    RESOLVE_ERROR = "ResolveError"

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def to_dict(self) -> dict:
        return {"type": self.kind, "message": self.message}


@dataclass(frozen=True)
class MxDetails:
    """The result of an MX lookup.

    ``records`` is ``None`` when the lookup found nothing; ``error`` then
    says why.
    """

    records: Optional[Tuple[MxRecord, ...]] = None
    error: Optional[str] = "Skipped"

    @property
    def found(self) -> bool:
        return self.records is not None

    @property
    def exchanges(self) -> List[str]:
        return [record.exchange for record in self.records or ()]

    def accepts_mail(self) -> bool:
        return bool(self.records)

    def to_dict(self) -> dict:
        return {"accepts_mail": self.accepts_mail(), "records": self.exchanges}


async def check_mx(domain: str, resolver: Any = None) -> MxDetails:
    """Look up the MX records of a domain.

    A domain without records yields details with no records; other
    failures raise :class:`MxError`.
    """
    if resolver is None:
        try:
            resolver = dns.asyncresolver.Resolver()
        except (OSError, dns.exception.DNSException) as exc:
            raise MxError(MxError.IO_ERROR, str(exc)) from exc
    try:
        answer = await resolver.resolve(domain, "MX")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as exc:
        return MxDetails(records=None, error=str(exc))
    except dns.exception.DNSException as exc:
        raise MxError(MxError.RESOLVE_ERROR, str(exc)) from exc
    except OSError as exc:
        raise MxError(MxError.IO_ERROR, str(exc)) from exc
    records = tuple(MxRecord(preference=int(rdata.preference), exchange=str(rdata.exchange)) for rdata in answer)
    return MxDetails(records=records, error=None)