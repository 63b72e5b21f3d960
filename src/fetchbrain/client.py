"""
Knowledge service client.
Single-URL queries go through the batcher, every network call is gated by the
circuit breaker, and service failures are downgraded to fallback results.
"""

from __future__ import annotations

import asyncio
import typing as t

import httpx
import structlog
from pydantic import ValidationError

from fetchbrain.circuit_breaker import CircuitBreaker, CircuitBreakerState
from fetchbrain.config import FetchBrainConfig
from fetchbrain.core import Batcher
from fetchbrain.exceptions import KnowledgeServiceError, KnowledgeServiceTimeout
from fetchbrain.logging import enable_debug
from fetchbrain.models import (
    KnowledgeResult,
    QueryRequest,
    QueryResponse,
    StatsResponse,
    TeachEntry,
    TeachRequest,
    TeachResponse,
)

log = structlog.get_logger(__name__)

ModelT = t.TypeVar("ModelT", QueryResponse, TeachResponse, StatsResponse)


class KnowledgeClient:
    """
    Client for the knowledge service.

    Parameters
    ----------
    config : FetchBrainConfig
        SDK configuration.
    transport : httpx.AsyncBaseTransport | None, optional
        Transport used by the HTTP client, e.g. a mock backend.
    clock : typing.Callable[[], float] | None, optional
        Time source for the circuit breaker.
    """

    def __init__(
        self,
        config: FetchBrainConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: t.Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        if config.debug:
            enable_debug()

        self._client_factory: t.Callable[[], httpx.AsyncClient] = lambda: httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=config.timeout_seconds,
            transport=transport,
        )

        breaker_kwargs: dict[str, t.Any] = {} if clock is None else {"clock": clock}
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            reset_timeout_seconds=config.circuit_reset_timeout_seconds,
            success_threshold=config.circuit_success_threshold,
            **breaker_kwargs,
        )
        self._batcher = Batcher(
            executor=self._execute_batch_query,
            max_size=config.batch_max_size,
            max_wait_seconds=config.batch_max_wait_seconds,
        )

        log.debug(
            event="Initialized KnowledgeClient",
            base_url=config.base_url,
            intelligence=config.intelligence_level.value,
            memory_depth=int(config.intelligence_level.memory_depth),
            learning_enabled=config.learning_enabled,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def config(self) -> FetchBrainConfig:
        return self._config

    async def query(self, url: str) -> KnowledgeResult:
        """
        Ask whether the service knows ``url``.

        Parameters
        ----------
        url : str
            URL to look up.

        Returns
        -------
        KnowledgeResult
            Service answer, or a fallback result when the circuit is open or the
            batch failed. Never raises.
        """
        if self._circuit_breaker.is_open():
            log.debug(event="Circuit open, skipping query", url=url)
            return KnowledgeResult.degraded()

        try:
            return await self._batcher.query(url)
        except Exception as error:
            log.debug(event="Query failed", url=url, error=str(object=error))
            return KnowledgeResult.degraded()

    async def query_bulk(self, urls: list[str]) -> dict[str, KnowledgeResult]:
        """
        Look up several URLs in one call, bypassing the batcher.

        Parameters
        ----------
        urls : list[str]
            URLs to look up.

        Returns
        -------
        dict[str, KnowledgeResult]
            One result per URL; every URL gets a fallback result on failure.
        """
        if self._circuit_breaker.is_open():
            log.debug(event="Circuit open, skipping bulk query", url_count=len(urls))
            return {url: KnowledgeResult.degraded() for url in urls}

        try:
            results = await self._execute_batch_query(urls)
        except Exception as error:
            log.debug(event="Bulk query failed", url_count=len(urls), error=str(object=error))
            return {url: KnowledgeResult.degraded() for url in urls}
        return {url: results.get(url) or KnowledgeResult.unknown() for url in urls}

    async def teach(self, url: str, data: dict[str, t.Any]) -> TeachResponse:
        """
        Submit scraped data for ``url``.

        Parameters
        ----------
        url : str
            URL the data was scraped from.
        data : dict[str, typing.Any]
            Scraped item.

        Returns
        -------
        TeachResponse
            Service verdict; ``rejected`` when learning is disabled, the circuit
            is open or the call failed. Never raises.
        """
        if not self._config.learning_enabled:
            return TeachResponse.rejected()

        if self._circuit_breaker.is_open():
            log.debug(event="Circuit open, skipping teach", url=url)
            return TeachResponse.rejected()

        # Only service errors count against the circuit.
        try:
            extract = self._config.extract_for_learning
            entry = TeachEntry(url=url, data=extract(data) if extract else data)
            payload = TeachRequest(entries=[entry]).model_dump(mode="json")
        except Exception as error:
            log.warning(
                event="Could not prepare data for teaching", url=url, error=str(object=error)
            )
            return TeachResponse.rejected()

        try:
            response = await self._request(
                method="POST",
                path="/v1/learn",
                payload=payload,
                response_model=TeachResponse,
            )
        except KnowledgeServiceError as error:
            self._circuit_breaker.record_failure()
            log.warning(event="Teach failed", url=url, error=str(object=error))
            return TeachResponse.rejected()

        self._circuit_breaker.record_success()
        log.debug(event="Taught data", url=url, status=response.status, learned=response.learned)
        return response

    async def stats(self) -> StatsResponse | None:
        """
        Fetch usage statistics, or ``None`` when the circuit is open or the call failed.
        """
        if self._circuit_breaker.is_open():
            return None

        try:
            response = await self._request(
                method="GET", path="/v1/stats", response_model=StatsResponse
            )
        except KnowledgeServiceError as error:
            self._circuit_breaker.record_failure()
            log.warning(event="Stats request failed", error=str(object=error))
            return None

        self._circuit_breaker.record_success()
        return response

    async def _execute_batch_query(self, urls: list[str]) -> dict[str, KnowledgeResult]:
        """
        Run one bulk query; the whole call counts as a single circuit signal.

        Parameters
        ----------
        urls : list[str]
            URLs in batch order.

        Returns
        -------
        dict[str, KnowledgeResult]
            Results keyed by URL.
        """
        try:
            response = await self._request(
                method="POST",
                path="/v1/query",
                payload=QueryRequest(
                    urls=urls, intelligence=self._config.intelligence_level
                ).model_dump(mode="json"),
                response_model=QueryResponse,
            )
        except KnowledgeServiceError:
            self._circuit_breaker.record_failure()
            raise

        self._circuit_breaker.record_success()

        results: dict[str, KnowledgeResult] = {}
        for item in response.known:
            results[item.url] = KnowledgeResult(
                known=True,
                data=item.data,
                confidence=item.confidence,
                learned_at=item.learned_at,
            )
        for url in response.unknown:
            results[url] = KnowledgeResult.unknown()
        log.debug(
            event="Batch query answered",
            url_count=len(urls),
            known_count=len(response.known),
        )
        return results

    async def _request(
        self,
        *,
        method: str,
        path: str,
        response_model: type[ModelT],
        payload: dict[str, t.Any] | None = None,
    ) -> ModelT:
        """
        Call the service and validate its JSON answer.

        Raises
        ------
        KnowledgeServiceError
            On transport errors, non-2xx status or an invalid payload.
        """
        try:
            async with asyncio.timeout(self._config.timeout_seconds):
                async with self._client_factory() as client:
                    response = await client.request(method=method, url=path, json=payload)
        except (TimeoutError, httpx.TimeoutException) as error:
            raise KnowledgeServiceTimeout(
                f"{method} {path} timed out after {self._config.timeout_seconds}s"
            ) from error
        except httpx.HTTPError as error:
            raise KnowledgeServiceError(f"{method} {path} failed: {error}") from error

        if response.is_error:
            raise KnowledgeServiceError(
                f"API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            return response_model.model_validate(response.json())
        except (ValueError, ValidationError) as error:
            raise KnowledgeServiceError(f"Invalid response from {path}: {error}") from error

    def circuit_state(self) -> CircuitBreakerState:
        return self._circuit_breaker.get_stats()

    def reset_circuit(self) -> None:
        self._circuit_breaker.reset()

    def clear_batch(self) -> None:
        self._batcher.clear()

    async def close(self) -> None:
        await self._batcher.close()
