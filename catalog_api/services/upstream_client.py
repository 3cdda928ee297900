"""
Catalog Backend — Upstream Regional Fetcher
===========================================

What:  Pulls the current snapshot of regional records from the external endpoint.
Why:   The upstream is the source of truth for the `regionais` table, but it is
       a remote service: it can be slow, down, or return garbage. The fetcher
       absorbs all of that and reports it as data, never as an exception.
How:   httpx GET with streaming body + size cap, tenacity retry for transient
       transport errors, pydantic TypeAdapter for strict decoding, and a hard
       wall-clock deadline over the whole thing.

Outcomes:
    FetchOk(records)           non-empty, de-duplicated snapshot (first occurrence wins)
    FetchEmpty()               upstream answered `[]`
    TransportFailure(reason)   network error, timeout, non-2xx status, size limit
    DecodeFailure(reason)      invalid JSON, not an array, missing/invalid `id` or `nome`

Retry policy (tenacity):
    retried:     connect/read errors, timeouts, HTTP 5xx
    not retried: HTTP 4xx, oversized body, decode errors
    attempts:    settings.upstream_retry_attempts, exponential backoff + jitter
    deadline:    settings.upstream_timeout covers every attempt and every wait
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import httpx
from pydantic import TypeAdapter, ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from catalog_api.config import settings
from catalog_api.exceptions import ConfigurationError, UpstreamError
from catalog_api.schemas.regional import ExternalRegionalPayload
from catalog_api.services.sync_planner import ExternalRegional, dedupe_snapshot

logger = logging.getLogger(__name__)

_SNAPSHOT_ADAPTER = TypeAdapter(List[ExternalRegionalPayload])


# ══════════════════════════════════════════════════════════════════════════
# Fetch Outcomes
# ══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class FetchOk:
    records: Tuple[ExternalRegional, ...]


@dataclass(frozen=True, slots=True)
class FetchEmpty:
    pass


@dataclass(frozen=True, slots=True)
class TransportFailure:
    reason: str


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    reason: str


FetchOutcome = Union[FetchOk, FetchEmpty, TransportFailure, DecodeFailure]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.retryable


# ══════════════════════════════════════════════════════════════════════════
# Fetcher
# ══════════════════════════════════════════════════════════════════════════


class RegionalFetcher:
    """
    HTTP client for `GET {base}/regionais`.

    Every argument defaults to the matching setting; tests pass an
    httpx.MockTransport instead of reaching the network.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_response_bytes: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_min_wait: Optional[float] = None,
        retry_max_wait: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = settings.upstream_url if url is None else url
        self.timeout = settings.upstream_timeout if timeout is None else timeout
        self.max_response_bytes = (
            settings.max_response_bytes if max_response_bytes is None else max_response_bytes
        )
        self.retry_attempts = (
            settings.upstream_retry_attempts if retry_attempts is None else retry_attempts
        )
        self.retry_min_wait = (
            settings.upstream_retry_min_wait if retry_min_wait is None else retry_min_wait
        )
        self.retry_max_wait = (
            settings.upstream_retry_max_wait if retry_max_wait is None else retry_max_wait
        )
        self._transport = transport

    async def fetch(self) -> FetchOutcome:
        """
        Fetch and decode one upstream snapshot.

        Raises:
            ConfigurationError: no upstream URL configured. This is the only
                exception that leaves this method; everything the upstream can
                do wrong is returned as a TransportFailure or DecodeFailure.
        """
        if not self.url:
            raise ConfigurationError(
                message="Regional synchronization is not configured (UPSTREAM_URL is empty)",
                setting="upstream_url",
            )

        request_id = str(uuid.uuid4())[:8]
        start_time = time.perf_counter()
        logger.info("[%s] Fetching regional snapshot from %s", request_id, self.url)

        try:
            body = await asyncio.wait_for(self._download(request_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "[%s] Upstream did not answer within %.1fs", request_id, self.timeout
            )
            return TransportFailure(
                reason=f"upstream did not answer within {self.timeout:g}s"
            )
        except UpstreamError as e:
            logger.warning("[%s] Upstream fetch failed: %s", request_id, e.message)
            return TransportFailure(reason=e.message)

        duration_ms = (time.perf_counter() - start_time) * 1000
        outcome = self._decode(body)
        if isinstance(outcome, FetchOk):
            logger.info(
                "[%s] Upstream snapshot received in %.0fms: %d regionais (%d bytes)",
                request_id,
                duration_ms,
                len(outcome.records),
                len(body),
            )
        elif isinstance(outcome, DecodeFailure):
            logger.warning("[%s] Upstream payload rejected: %s", request_id, outcome.reason)
        return outcome

    async def _download(self, request_id: str) -> bytes:
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry_min_wait,
                max=self.retry_max_wait,
                jitter=self.retry_max_wait / 4,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            return await retrying(self._get_once, client, request_id)

    async def _get_once(self, client: httpx.AsyncClient, request_id: str) -> bytes:
        """
        One GET attempt. Streams the body so an oversized response is cut off
        as soon as it crosses max_response_bytes.
        """
        try:
            async with client.stream(
                "GET", self.url, headers={"Accept": "application/json"}
            ) as response:
                status = response.status_code
                if not response.is_success:
                    raise UpstreamError(
                        message=f"upstream answered HTTP {status}",
                        retryable=status >= 500,
                        status_code=status,
                    )

                declared = response.headers.get("Content-Length", "")
                if declared.isdigit() and int(declared) > self.max_response_bytes:
                    raise UpstreamError(
                        message=(
                            f"upstream response of {declared} bytes exceeds the size limit "
                            f"of {self.max_response_bytes} bytes"
                        ),
                    )

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_response_bytes:
                        raise UpstreamError(
                            message=(
                                "upstream response exceeds the size limit "
                                f"of {self.max_response_bytes} bytes"
                            ),
                        )
                return bytes(body)

        except httpx.TransportError as e:
            logger.debug("[%s] Upstream transport error: %r", request_id, e)
            raise UpstreamError(
                message=f"upstream unreachable ({type(e).__name__}: {e})",
                retryable=True,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamError(
                message=f"upstream request failed ({type(e).__name__}: {e})",
            ) from e

    def _decode(self, body: bytes) -> FetchOutcome:
        try:
            payload = _SNAPSHOT_ADAPTER.validate_json(body)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"]) or "body"
            return DecodeFailure(
                reason=(
                    f"{e.error_count()} invalid item(s) in upstream payload; "
                    f"first at {location}: {first['msg']}"
                )
            )

        if not payload:
            return FetchEmpty()

        records = dedupe_snapshot(
            ExternalRegional(external_id=item.id, name=item.nome) for item in payload
        )
        dropped = len(payload) - len(records)
        if dropped:
            logger.warning(
                "Upstream snapshot repeats %d external id(s); keeping first occurrences",
                dropped,
            )
        return FetchOk(records=tuple(records))


# ── Singleton Instance ────────────────────────────────────────────────────
regional_fetcher = RegionalFetcher()
