"""
Per-request handler wrapper.
Each request goes through: query the service -> skip or run -> (run) open the
request scope, hand the handler a decorated context whose ``push_data`` teaches
new data -> release the scope.
We use wrapt so the decorated context still passes isinstance checks and exposes
every attribute of the host's context.
"""

from __future__ import annotations

import functools
import typing as t
from dataclasses import dataclass, field

import structlog
import wrapt

from fetchbrain.client import KnowledgeClient
from fetchbrain.context import RequestContext, RequestScope
from fetchbrain.hooks import DEFAULT_LABEL, PushData, intercept_push_data, should_run_handler
from fetchbrain.models import KnowledgeResult

log = structlog.get_logger(__name__)

Handler = t.Callable[[t.Any], t.Awaitable[t.Any]]


@dataclass
class AIContext:
    """
    What the service knows about the current request, exposed to handlers as ``context.ai``.
    """

    known: bool
    data: dict[str, t.Any] | None
    confidence: float | None
    _scope: RequestScope = field(repr=False)
    _push_data: PushData | None = field(repr=False)

    async def use_ai_data(self) -> None:
        """
        Push the known data through the original sink; later pushes are not taught.
        """
        if not (self.known and self.data and self._push_data):
            return
        self._scope.mark_used_ai_data()
        await self._push_data(self.data)
        log.info(event="Used AI data", url=self._scope.url, confidence=self.confidence)


class EnhancedRequest(wrapt.ObjectProxy):
    """
    Host request whose ``user_data`` also carries the lookup outcome.

    ``user_data`` is a copy of the host's mapping extended with
    ``fetchbrain_known`` and ``fetchbrain_data``; the host request is not modified.
    """

    def __init__(self, wrapped: t.Any, *, result: KnowledgeResult) -> None:
        super().__init__(wrapped)
        self._self_user_data = {
            **(getattr(wrapped, "user_data", None) or {}),
            "fetchbrain_known": result.known,
            "fetchbrain_data": result.data,
        }

    @property
    def user_data(self) -> dict[str, t.Any]:
        return self._self_user_data


class EnhancedContext(wrapt.ObjectProxy):
    """
    Host request context decorated with ``ai``, an intercepting ``push_data`` and a
    ``request`` whose ``user_data`` records the lookup outcome.

    The host's own context object is not modified.
    """

    def __init__(
        self,
        wrapped: t.Any,
        *,
        ai: AIContext,
        push_data: PushData | None,
        request: EnhancedRequest,
    ) -> None:
        super().__init__(wrapped)
        self._self_ai = ai
        self._self_push_data = push_data
        self._self_request = request

    @property
    def ai(self) -> AIContext:
        return self._self_ai

    @property
    def push_data(self) -> PushData | None:
        return self._self_push_data

    @property
    def request(self) -> EnhancedRequest:
        return self._self_request


class HandlerWrapper:
    """
    Callable wrapping a host request handler with query/skip/learn logic.

    Parameters
    ----------
    handler : Handler
        Original request handler, called with the request context.
    client : KnowledgeClient
        Client used to query and teach.
    """

    def __init__(self, handler: Handler, *, client: KnowledgeClient) -> None:
        self._handler = handler
        self._client = client
        functools.update_wrapper(wrapper=self, wrapped=handler, updated=())

    @property
    def client(self) -> KnowledgeClient:
        return self._client

    @property
    def handler(self) -> Handler:
        return self._handler

    async def __call__(self, context: t.Any) -> None:
        request = context.request
        url: str = request.url
        label: str | None = getattr(request, "label", None)
        config = self._client.config

        with structlog.contextvars.bound_contextvars(url=url, label=label or DEFAULT_LABEL):
            result = await self._client.query(url)
            original_push_data: PushData | None = getattr(context, "push_data", None)

            if self._should_skip(result=result, label=label):
                log.info(event="Optimized, handler skipped", confidence=result.confidence)
                if original_push_data is not None:
                    await original_push_data(result.data)
                return

            if result.known:
                log.info(event="Running handler with AI data available")
            else:
                log.debug(event="Running handler to learn", fallback=result.fallback)

            scope = RequestScope(
                url=url,
                client=self._client,
                learning_enabled=config.learning_enabled,
                already_known=result.known,
            )
            enhanced = EnhancedContext(
                context,
                ai=AIContext(
                    known=result.known,
                    data=result.data,
                    confidence=result.confidence,
                    _scope=scope,
                    _push_data=original_push_data,
                ),
                push_data=(
                    intercept_push_data(original_push_data, scope=scope)
                    if original_push_data is not None
                    else None
                ),
                request=EnhancedRequest(request, result=result),
            )
            async with RequestContext(scope=scope):
                await self._handler(enhanced)

    def _should_skip(self, *, result: KnowledgeResult, label: str | None) -> bool:
        if not (result.known and result.data):
            return False
        return not should_run_handler(self._client.config.always_run, label)
