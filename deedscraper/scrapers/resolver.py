"""
Address -> site identifier lookup.

Some assessor sites can only be searched by parcel number. Resolvers turn a
street address into that identifier; the HTTP resolver queries a parcel
lookup service (a Regrid-style JSON API) and digs the identifier field out of
whatever shape the response has.
"""

import asyncio
import logging
from functools import wraps
from time import sleep
from typing import Any, Optional, Protocol, Union

import requests
from faker import Faker
from requests.exceptions import ChunkedEncodingError, ConnectionError as RequestsConnectionError, ProxyError, SSLError

from ..errors import ErrorKind, NotFound

logger = logging.getLogger(__name__)

max_attempts = 3
retry_delay_s = 2


class IdentifierResolver(Protocol):
    async def resolve(self, address: str) -> Union[str, NotFound]:
        ...


def attempts(f):
    """Retry a request on transient transport errors, re-raising the last one."""

    @wraps(f)
    def wrapper(*args, **kwargs):
        for i in range(max_attempts):
            try:
                return f(*args, **kwargs)
            except (ChunkedEncodingError, RequestsConnectionError, ProxyError, SSLError) as e:
                if i == max_attempts - 1:
                    raise
                logger.warning(f"method: {f.__name__}, Error: {e}, retrying...")
                sleep(retry_delay_s)

    return wrapper


def find_field(data: Any, field_name: str) -> Optional[str]:
    """Depth-first search of a JSON value for the first non-empty ``field_name``."""
    if isinstance(data, dict):
        value = data.get(field_name)
        if value not in (None, ""):
            return str(value)
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return None
    for child in children:
        found = find_field(child, field_name)
        if found:
            return found
    return None


class HttpIdentifierResolver:
    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        timeout_s: float = 20,
        id_field: str = "parcelnumb",
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.token = token
        self.timeout_s = timeout_s
        self.id_field = id_field
        self._session = session or requests.session()

    @property
    def base_headers(self) -> dict:
        return {
            "User-Agent": Faker(providers=["faker.providers.user_agent"]).chrome(),
            "Accept": "application/json",
        }

    @attempts
    def _get(self, address: str) -> requests.Response:
        params = {"query": address}
        if self.token:
            params["token"] = self.token
        return self._session.get(self.endpoint, params=params, headers=self.base_headers, timeout=self.timeout_s)

    def _lookup(self, address: str) -> Union[str, NotFound]:
        try:
            response = self._get(address)
        except requests.Timeout:
            return NotFound(kind=ErrorKind.TIMEOUT, message=f"identifier lookup timed out after {self.timeout_s}s")
        except requests.RequestException as e:
            return NotFound(kind=ErrorKind.NETWORK_ERROR, message=f"identifier lookup failed: {e}")

        if response.status_code in (401, 403):
            return NotFound(
                kind=ErrorKind.AUTHENTICATION_REQUIRED,
                message=f"identifier lookup refused with HTTP {response.status_code}",
            )
        if response.status_code == 404:
            return NotFound(message=f"no parcel found for {address}")
        if not response.ok:
            return NotFound(
                kind=ErrorKind.NETWORK_ERROR,
                message=f"identifier lookup failed with HTTP {response.status_code}",
            )

        try:
            payload = response.json()
        except ValueError:
            return NotFound(kind=ErrorKind.SITE_STRUCTURE_CHANGED, message="identifier lookup returned invalid JSON")

        identifier = find_field(payload, self.id_field)
        if not identifier:
            return NotFound(message=f"no {self.id_field} in lookup response for {address}")
        return identifier

    async def resolve(self, address: str) -> Union[str, NotFound]:
        logger.info(f"🔎 Resolving identifier for {address}")
        result = await asyncio.to_thread(self._lookup, address)
        if result:
            logger.info(f"✅ Resolved {address} -> {result}")
        return result
