"""
TracStamp Time Source Aggregator

Queries independent UTC time providers concurrently and merges the answers.

Every provider gets its own timeout. A provider that errors or times out is
logged and skipped. The primary time comes from the first provider in the
configured priority order that answered, so network timing decides only
which samples are recorded, never which one is primary. If nobody answers
the local clock is used and recorded as ``local_fallback``.
"""

from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import ntplib

from tracstamp.constants import (
    TIME_PROVIDERS,
    TIME_QUERY_TIMEOUT_SEC,
    LOCAL_FALLBACK_SOURCE,
    PROVIDER_KIND_HTTP,
    PROVIDER_KIND_NTP,
    TimeProvider,
)
from tracstamp.core.certificate import (
    TimeData,
    TimeSample,
    format_utc_time,
    has_utc_designator,
    parse_utc_time,
    to_unix_ms,
)
from tracstamp.errors import TimeProviderError

logger = logging.getLogger(__name__)


# =============================================================================
# Provider Queries
# =============================================================================

async def query_http_provider(
    client: Any,
    provider: TimeProvider,
    timeout: float = TIME_QUERY_TIMEOUT_SEC
) -> TimeSample:
    """
    Query a JSON time endpoint.

    Args:
        client: httpx.AsyncClient (or anything with an async ``get``)
        provider: Provider configuration
        timeout: Request timeout in seconds

    Returns:
        TimeSample with the provider's ISO-8601 time

    Raises:
        TimeProviderError: On transport error, bad status or bad payload
    """
    try:
        resp = await client.get(provider.endpoint, timeout=timeout)
    except httpx.HTTPError as e:
        raise TimeProviderError(provider.name, str(e) or type(e).__name__) from e

    if resp.status_code != 200:
        raise TimeProviderError(provider.name, f"HTTP {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as e:
        raise TimeProviderError(provider.name, "invalid JSON body") from e

    value = data.get(provider.field) if isinstance(data, dict) else None
    if not isinstance(value, str) or not value:
        raise TimeProviderError(provider.name, f"missing field '{provider.field}'")

    # timeapi.io reports UTC without a designator
    if not has_utc_designator(value):
        value = f"{value}Z"

    try:
        parse_utc_time(value)
    except ValueError as e:
        raise TimeProviderError(provider.name, f"unparsable time {value!r}") from e

    return TimeSample(name=provider.name, time=value)


async def query_ntp_provider(
    provider: TimeProvider,
    timeout: float = TIME_QUERY_TIMEOUT_SEC
) -> TimeSample:
    """
    Query an NTP server.

    ntplib is blocking, so the request runs in the default executor.

    Raises:
        TimeProviderError: If the server cannot be reached
    """
    client = ntplib.NTPClient()
    loop = asyncio.get_running_loop()

    try:
        response = await loop.run_in_executor(
            None,
            lambda: client.request(provider.endpoint, version=4, timeout=timeout)
        )
    except (ntplib.NTPException, OSError) as e:
        raise TimeProviderError(provider.name, str(e) or type(e).__name__) from e

    moment = datetime.fromtimestamp(response.tx_time, tz=timezone.utc)
    return TimeSample(name=provider.name, time=format_utc_time(moment))


def local_fallback_sample(now: Optional[datetime] = None) -> TimeSample:
    """Sample taken from the local system clock."""
    moment = now or datetime.now(timezone.utc)
    return TimeSample(name=LOCAL_FALLBACK_SOURCE, time=format_utc_time(moment))


# =============================================================================
# Aggregator
# =============================================================================

class TimeSourceAggregator:
    """
    Concurrent multi-provider UTC clock.

    ``fetch_utc_time`` never raises: the local clock is always there.
    """

    def __init__(
        self,
        providers: Optional[Sequence[TimeProvider]] = None,
        timeout_sec: float = TIME_QUERY_TIMEOUT_SEC,
        client_factory: Optional[Callable[[], Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.providers: List[TimeProvider] = list(
            TIME_PROVIDERS if providers is None else providers
        )
        self.timeout_sec = timeout_sec
        self._client_factory = client_factory or httpx.AsyncClient
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def fetch_utc_time(self) -> TimeData:
        """
        Query all providers and pick the primary time.

        Returns:
            TimeData whose time_sources are in completion order, followed by
            a local_fallback entry if no provider answered
        """
        answered: Dict[int, TimeSample] = {}
        time_sources: List[TimeSample] = []

        async with self._client_factory() as client:
            tasks = [
                asyncio.create_task(self._query(index, client, provider))
                for index, provider in enumerate(self.providers)
            ]
            for next_done in asyncio.as_completed(tasks):
                index, sample = await next_done
                if sample is None:
                    continue
                answered[index] = sample
                time_sources.append(sample)

        primary: Optional[TimeSample] = None
        for index in range(len(self.providers)):
            if index in answered:
                primary = answered[index]
                break

        if primary is None:
            primary = local_fallback_sample(self._clock())
            time_sources.append(primary)
            logger.warning("All time providers unavailable, using local time as fallback")

        logger.debug(
            f"UTC time {primary.time} from {primary.name} "
            f"({len(time_sources)} sources)"
        )

        return TimeData(
            utc_time=primary.time,
            unix_ts=to_unix_ms(primary.time),
            time_sources=tuple(time_sources),
        )

    async def _query(
        self,
        index: int,
        client: Any,
        provider: TimeProvider
    ) -> Tuple[int, Optional[TimeSample]]:
        """Query one provider, absorbing every failure."""
        try:
            if provider.kind == PROVIDER_KIND_HTTP:
                pending = query_http_provider(client, provider, self.timeout_sec)
            elif provider.kind == PROVIDER_KIND_NTP:
                pending = query_ntp_provider(provider, self.timeout_sec)
            else:
                raise TimeProviderError(provider.name, f"unknown provider kind '{provider.kind}'")

            sample = await asyncio.wait_for(pending, timeout=self.timeout_sec)

        except asyncio.TimeoutError:
            logger.info(f"Time provider {provider.name} timed out after {self.timeout_sec}s")
            return index, None

        except TimeProviderError as e:
            logger.info(e.message)
            return index, None

        except Exception as e:
            logger.info(f"Time provider {provider.name} unavailable: {e}")
            return index, None

        return index, sample

    def get_info(self) -> dict:
        """Describe the configured providers."""
        return {
            "providers": [
                {"name": p.name, "kind": p.kind, "endpoint": p.endpoint}
                for p in self.providers
            ],
            "timeout_sec": self.timeout_sec,
            "fallback": LOCAL_FALLBACK_SOURCE,
        }
