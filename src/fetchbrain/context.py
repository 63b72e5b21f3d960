"""
Ambient per-request scope.

The scope of the request being handled lives in a ``ContextVar``, so any code
running within the request's async extent can read it without being handed the
request: asyncio tasks and ``call_soon``/``call_later`` callbacks copy the
context when they are created and therefore inherit the scope. Work scheduled
before the scope was entered, or on threads started without
``contextvars.copy_context()``, does not see it.
"""

from __future__ import annotations

import contextvars
import typing as t
from dataclasses import dataclass, field

if t.TYPE_CHECKING:
    from fetchbrain.client import KnowledgeClient


@dataclass
class RequestScope:
    """
    What the knowledge service knew about the request being handled.

    Parameters
    ----------
    url : str
        URL of the request.
    client : KnowledgeClient
        Client used to teach data produced by this request.
    learning_enabled : bool
        Whether teaching is enabled.
    already_known : bool
        Whether the service already knew the URL.
    """

    url: str
    client: "KnowledgeClient"
    learning_enabled: bool
    already_known: bool
    used_ai_data: bool = field(default=False, init=False)

    @property
    def should_teach(self) -> bool:
        # Suppression is per request: once known or once AI data was used, nothing is taught.
        return self.learning_enabled and not self.already_known and not self.used_ai_data

    def mark_used_ai_data(self) -> None:
        self.used_ai_data = True


active_scope: contextvars.ContextVar[RequestScope | None] = contextvars.ContextVar(
    "active_scope", default=None
)


def get_current_scope() -> RequestScope | None:
    """Scope of the request whose async extent is currently executing, if any."""
    return active_scope.get()


class RequestContext:
    """
    Context manager that makes a scope ambient for a block.

    The previous scope is restored on exit, whether the block returned or raised.

    Parameters
    ----------
    scope : RequestScope
        Scope to activate.
    """

    def __init__(self, *, scope: RequestScope) -> None:
        self._scope = scope
        self._token: contextvars.Token[RequestScope | None] | None = None

    @property
    def scope(self) -> RequestScope:
        return self._scope

    def __enter__(self) -> RequestScope:
        self._token = active_scope.set(self._scope)
        return self._scope

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        if self._token is not None:
            active_scope.reset(self._token)
            self._token = None

    async def __aenter__(self) -> RequestScope:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)
