"""
HTTP operations for the request dispatcher.

Wraps a blocking requests call as a no-argument coroutine function. A 429
response becomes RetryAfter (delay from the provider payload or the
Retry-After header). Any other HTTP error becomes DataUnavailableError.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import requests

from ..config.settings import DEFAULT_RETRY_AFTER_SECONDS, REQUEST_TIMEOUT_SECONDS
from ..core.dispatcher import RequestDispatcher, RetryAfter
from ..core.exceptions import DataUnavailableError

logger = logging.getLogger(__name__)


def retry_after_seconds(response: requests.Response) -> float:
    """Delay requested by a throttling response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        retry_after = (payload.get("parameters") or {}).get("retry_after", payload.get("retry_after"))
        if retry_after is not None:
            try:
                return float(retry_after)
            except (TypeError, ValueError):
                pass

    header = response.headers.get("Retry-After")
    if header is not None:
        try:
            return float(header)
        except ValueError:
            pass
    return DEFAULT_RETRY_AFTER_SECONDS


def request_op(method: str, url: str, service: str, **kwargs) -> Callable[[], Any]:
    """
    Build a dispatcher operation for one HTTP call.

    Args:
        method: "GET" or "POST"
        url: Request URL
        service: Service name, used in error context
        **kwargs: Passed to requests.request (params, json, headers)

    Returns:
        Coroutine function returning the decoded JSON body or RetryAfter
    """
    kwargs.setdefault("timeout", REQUEST_TIMEOUT_SECONDS)

    async def operation():
        try:
            response = await asyncio.to_thread(requests.request, method, url, **kwargs)
        except requests.RequestException as e:
            raise DataUnavailableError(f"{method} {url} failed", service=service, original_error=e) from e

        if response.status_code == 429:
            return RetryAfter(retry_after_seconds(response))

        if response.status_code != 200:
            raise DataUnavailableError(
                f"HTTP {response.status_code} from {url}",
                service=service,
                context={"body": response.text[:200]},
            )

        try:
            return response.json()
        except ValueError as e:
            raise DataUnavailableError(f"Invalid JSON from {url}", service=service, original_error=e) from e

    return operation


async def get_json(
    dispatcher: RequestDispatcher,
    service: str,
    url: str,
    params: Optional[dict] = None,
    request_id: Optional[str] = None,
) -> Any:
    """Rate-limited GET returning decoded JSON."""
    return await dispatcher.submit(service, request_id, request_op("GET", url, service, params=params))


async def query_subgraph(
    dispatcher: RequestDispatcher,
    service: str,
    url: str,
    query: str,
    request_id: Optional[str] = None,
) -> dict:
    """
    Rate-limited GraphQL POST.

    Returns:
        The "data" object of the response

    Raises:
        DataUnavailableError: GraphQL errors or missing data
    """
    result = await dispatcher.submit(service, request_id, request_op("POST", url, service, json={"query": query}))

    if not isinstance(result, dict) or "errors" in result:
        errors = result.get("errors") if isinstance(result, dict) else result
        raise DataUnavailableError(f"GraphQL errors: {errors}", service=service)

    data = result.get("data")
    if not isinstance(data, dict):
        raise DataUnavailableError("GraphQL response without data", service=service)
    return data
