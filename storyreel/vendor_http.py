"""
Uniform outbound HTTP for every vendor integration.

Each call opens a short-lived httpx.AsyncClient (the pattern the pipeline
steps already used) and translates failures into the error taxonomy:

  - transport errors / client timeouts  → VendorUnavailable
  - non-2xx responses                   → VendorRejected (vendor status kept)
  - bodies that fail their schema       → VendorRejected

Nothing here retries; a failed call is reported once and the user decides
whether to re-trigger the stage.
"""

import logging
from typing import Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import VendorRejected, VendorUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60  # seconds

T = TypeVar("T", bound=BaseModel)

# Swapped for an httpx.MockTransport in tests.
_transport: Optional[httpx.AsyncBaseTransport] = None


def set_transport(transport: Optional[httpx.AsyncBaseTransport]):
    """Route every vendor call through `transport` (None restores the network)."""
    global _transport
    _transport = transport


def _client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, transport=_transport, follow_redirects=True)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("error", "message", "detail", "msg"):
            if body.get(key):
                return str(body[key])[:500]
    return str(body)[:500]


async def vendor_request(
    vendor: str,
    method: str,
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs,
) -> httpx.Response:
    """Perform one HTTP call to `vendor` and return the 2xx response."""
    try:
        async with _client(timeout) as client:
            response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        logger.error(f"{vendor} unreachable ({method} {url}): {e!r}")
        raise VendorUnavailable(f"{vendor} could not be reached: {e}") from e

    if response.is_success:
        return response

    message = _error_message(response)
    logger.warning(f"{vendor} rejected {method} {url}: {response.status_code} {message}")
    raise VendorRejected(
        vendor,
        f"{response.status_code} {message}",
        vendor_status=response.status_code,
        status_code=response.status_code if response.status_code >= 400 else 502,
    )


async def vendor_json(vendor: str, method: str, url: str, **kwargs) -> dict:
    """Like `vendor_request` but decodes the JSON body."""
    response = await vendor_request(vendor, method, url, **kwargs)
    try:
        return response.json()
    except ValueError as e:
        raise VendorRejected(vendor, f"response was not JSON: {response.text[:200]}") from e


def parse_vendor_response(vendor: str, schema: Type[T], payload) -> T:
    """Validate a vendor payload against its schema."""
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"{vendor} response failed {schema.__name__} validation: {e}")
        raise VendorRejected(vendor, f"unexpected response shape ({schema.__name__})") from e
