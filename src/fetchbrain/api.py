"""
Main endpoint for users.
Exposes ``enhance`` to put a crawler's request handler behind the knowledge
service, ``enhance_handler`` to decorate a bare handler, and the ``FetchBrain``
facade for direct queries.
"""

from __future__ import annotations

import inspect
import typing as t

import structlog
import wrapt

from fetchbrain.client import KnowledgeClient
from fetchbrain.config import FetchBrainConfig
from fetchbrain.models import KnowledgeResult, StatsResponse, TeachResponse
from fetchbrain.wrapper import Handler, HandlerWrapper

log = structlog.get_logger(__name__)

HANDLER_FIELD = "request_handler"


def _resolve_client(
    *,
    config: FetchBrainConfig | None,
    client: KnowledgeClient | None,
    overrides: dict[str, t.Any],
) -> KnowledgeClient:
    if client is not None:
        if config is not None or overrides:
            raise TypeError("Pass either a client or a configuration, not both.")
        return client
    if config is None:
        config = FetchBrainConfig(**overrides)
    else:
        config = config.with_overrides(**overrides)
    return KnowledgeClient(config=config)


def enhance_handler(
    handler: Handler,
    config: FetchBrainConfig | None = None,
    *,
    client: KnowledgeClient | None = None,
    **overrides: t.Any,
) -> HandlerWrapper:
    """
    Decorate a request handler with query/skip/learn behaviour.

    Parameters
    ----------
    handler : Handler
        Coroutine function taking the host's request context.
    config : FetchBrainConfig | None, optional
        SDK configuration, built from ``overrides`` and the environment when omitted.
    client : KnowledgeClient | None, optional
        Existing client to share between handlers.
    **overrides : typing.Any
        Configuration fields overriding ``config``.

    Returns
    -------
    HandlerWrapper
        Wrapped handler, callable like the original.
    """
    return HandlerWrapper(
        handler, client=_resolve_client(config=config, client=client, overrides=overrides)
    )


class EnhancedCrawler(wrapt.ObjectProxy):
    """
    Crawler proxy exposing the knowledge client and closing it when a run ends.
    """

    def __init__(self, wrapped: t.Any, *, client: KnowledgeClient) -> None:
        super().__init__(wrapped)
        self._self_client = client

    @property
    def fetchbrain(self) -> KnowledgeClient:
        return self._self_client

    async def run(self, *args: t.Any, **kwargs: t.Any) -> t.Any:
        try:
            result = self.__wrapped__.run(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            log.debug(event="Crawl finished, closing knowledge client")
            await self._self_client.close()


def enhance(
    crawler: t.Any,
    config: FetchBrainConfig | None = None,
    *,
    client: KnowledgeClient | None = None,
    **overrides: t.Any,
) -> EnhancedCrawler:
    """
    Put a crawler's request handler behind the knowledge service.

    The crawler's ``request_handler`` field is replaced by a ``HandlerWrapper``:
    known URLs skip the handler (unless ``always_run`` says otherwise) and data
    scraped from unknown URLs is taught back to the service.

    Parameters
    ----------
    crawler : typing.Any
        Crawler exposing a ``request_handler`` coroutine function and ``run``.
    config : FetchBrainConfig | None, optional
        SDK configuration, built from ``overrides`` and the environment when omitted.
    client : KnowledgeClient | None, optional
        Existing client to use instead of building one.
    **overrides : typing.Any
        Configuration fields overriding ``config``.

    Returns
    -------
    EnhancedCrawler
        Proxy behaving like ``crawler`` with an extra ``fetchbrain`` attribute.

    Examples
    --------
    >>> crawler = enhance(MyCrawler(request_handler=handler), learning_enabled=True)
    >>> await crawler.run(["https://example.com"])
    """
    knowledge_client = _resolve_client(config=config, client=client, overrides=overrides)

    original_handler = getattr(crawler, HANDLER_FIELD, None)
    if original_handler is None:
        log.warning(event="No request handler found on crawler, returning it unmodified")
        return EnhancedCrawler(crawler, client=knowledge_client)

    if not isinstance(original_handler, HandlerWrapper):
        setattr(
            crawler,
            HANDLER_FIELD,
            HandlerWrapper(original_handler, client=knowledge_client),
        )
    log.debug(event="Enhanced crawler", crawler=type(crawler).__name__)
    return EnhancedCrawler(crawler, client=knowledge_client)


class FetchBrain:
    """
    Facade for querying and teaching the knowledge service directly.

    Parameters
    ----------
    config : FetchBrainConfig
        SDK configuration.
    client : KnowledgeClient | None, optional
        Client to use instead of building one from ``config``.
    """

    def __init__(self, config: FetchBrainConfig, *, client: KnowledgeClient | None = None) -> None:
        self._client = client or KnowledgeClient(config=config)

    @property
    def client(self) -> KnowledgeClient:
        return self._client

    async def query(self, url: str) -> KnowledgeResult:
        return await self._client.query(url)

    async def query_bulk(self, urls: list[str]) -> dict[str, KnowledgeResult]:
        return await self._client.query_bulk(urls)

    async def teach(self, url: str, data: dict[str, t.Any]) -> TeachResponse:
        return await self._client.teach(url, data)

    async def stats(self) -> StatsResponse | None:
        return await self._client.stats()

    def enhance(self, crawler: t.Any) -> EnhancedCrawler:
        return enhance(crawler, client=self._client)

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> "FetchBrain":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.close()


def create_fetchbrain(config: FetchBrainConfig | None = None, **overrides: t.Any) -> FetchBrain:
    """Create a standalone ``FetchBrain`` without enhancing a crawler."""
    if config is None:
        config = FetchBrainConfig(**overrides)
    else:
        config = config.with_overrides(**overrides)
    return FetchBrain(config=config)
