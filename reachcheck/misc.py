"""Miscellaneous facts about an address: disposable, role account, Gravatar, breaches."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Collection, FrozenSet, Optional, Union
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

GRAVATAR_API_URL = "https://www.gravatar.com/avatar/"
HIBP_API_URL = "https://haveibeenpwned.com/api/v3/breachedaccount/"
USER_AGENT = "reacher"


@dataclass(frozen=True)
class MiscDetails:
    """Metadata about the address and its provider."""

    is_disposable: bool = False
    is_role_account: bool = False
    gravatar_url: Optional[str] = None
    haveibeenpwned: Optional[bool] = None

    def to_dict(self) -> dict:
        return {
            "is_disposable": self.is_disposable,
            "is_role_account": self.is_role_account,
            "gravatar_url": self.gravatar_url,
            "haveibeenpwned": self.haveibeenpwned,
        }


def gravatar_url(email: str) -> str:
    """The Gravatar avatar URL for an address: the MD5 hex digest of it."""
    digest = hashlib.md5(email.encode("utf-8")).hexdigest()
    return GRAVATAR_API_URL + digest


async def check_gravatar(email: str, client: Optional[httpx.AsyncClient] = None) -> Optional[str]:
    """Return the avatar URL if Gravatar has an image for the address."""
    url = gravatar_url(email)
    logger.debug("[email=%s] Request Gravatar API with url: %r", email, url)
    if client is None:
        async with httpx.AsyncClient() as own_client:
            return await _fetch_gravatar(email, url, own_client)
    return await _fetch_gravatar(email, url, client)


async def _fetch_gravatar(email: str, url: str, client: httpx.AsyncClient) -> Optional[str]:
    try:
        # d=404 makes Gravatar answer 404 instead of a default image.
        response = await client.get(url, params={"d": "404"})
    except httpx.HTTPError as exc:
        logger.debug("[email=%s] Gravatar request failed: %s", email, exc)
        return None
    logger.debug("[email=%s] Gravatar response: %s", email, response.status_code)
    return url if response.status_code == 200 else None


async def check_haveibeenpwned(
    email: str,
    api_key: Optional[str],
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[bool]:
    """Whether the address appears in any known breach.

    Returns ``False`` when the service reports the address unknown, and
    ``None`` when the answer could not be obtained.
    """
    if client is None:
        async with httpx.AsyncClient() as own_client:
            return await _fetch_breaches(email, api_key, own_client)
    return await _fetch_breaches(email, api_key, client)


async def _fetch_breaches(email: str, api_key: Optional[str], client: httpx.AsyncClient) -> Optional[bool]:
    headers = {"user-agent": USER_AGENT}
    if api_key is not None:
        headers["hibp-api-key"] = api_key
    url = HIBP_API_URL + quote(email, safe="")
    try:
        response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Error while checking if email has been pwned: %s", exc)
        return None
    if response.status_code == 404:
        logger.error("Error while checking if email has been pwned: not found")
        return False
    if response.status_code != 200:
        logger.error("Error while checking if email has been pwned: HTTP %s", response.status_code)
        return None
    try:
        breaches = response.json()
    except ValueError as exc:
        logger.error("Error while checking if email has been pwned: %s", exc)
        return None
    if not isinstance(breaches, list):
        logger.error("Error while checking if email has been pwned: unexpected body")
        return None
    logger.debug("Email found in %d breaches", len(breaches))
    return bool(breaches)


def load_role_accounts(text: Union[str, bytes]) -> FrozenSet[str]:
    """Parse a JSON list of role-account usernames."""
    data = json.loads(text)
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ValueError("role accounts should be a JSON list of strings")
    return frozenset(item.lower() for item in data)


def _is_disposable(address: str, disposable_domains: Collection[str]) -> bool:
    domain = address.rpartition("@")[2].lower()
    labels = domain.split(".")
    return any(".".join(labels[start:]) in disposable_domains for start in range(len(labels)))


async def check_misc(
    address: str,
    username: str,
    role_accounts: Collection[str],
    disposable_domains: Collection[str] = frozenset(),
    check_gravatar_enabled: bool = False,
    haveibeenpwned_api_key: Optional[str] = None,
) -> MiscDetails:
    """Gather misc details about a syntactically valid address."""
    avatar = await check_gravatar(address) if check_gravatar_enabled else None
    pwned = (
        await check_haveibeenpwned(address, haveibeenpwned_api_key)
        if haveibeenpwned_api_key is not None
        else None
    )
    return MiscDetails(
        is_disposable=_is_disposable(address, disposable_domains),
        is_role_account=username.lower() in role_accounts,
        gravatar_url=avatar,
        haveibeenpwned=pwned,
    )