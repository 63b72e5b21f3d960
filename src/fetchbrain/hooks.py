"""
Learning-aware data emission.
Handlers emit data either through their context's ``push_data`` sink, which the
handler wrapper replaces with an intercepting one, or through the module-level
``push_data`` below, which needs no handle on the request: it resolves the
current URL from the ambient request scope.
"""

from __future__ import annotations

import functools
import typing as t

import structlog

from fetchbrain.config import AlwaysRun
from fetchbrain.context import RequestScope, get_current_scope

log = structlog.get_logger(__name__)

DataItem = dict[str, t.Any]
PushData = t.Callable[..., t.Awaitable[t.Any]]

DEFAULT_LABEL = "default"


class DatasetLike(t.Protocol):
    async def push_data(self, data: DataItem | list[DataItem], **kwargs: t.Any) -> t.Any: ...


def should_run_handler(always_run: AlwaysRun | None, label: str | None) -> bool:
    """
    Decide whether a handler still runs for a URL the service already knows.

    Parameters
    ----------
    always_run : bool | str | list[str] | None
        ``False``/``None`` skips every handler, ``True`` runs every handler, a
        label or list of labels runs only matching handlers.
    label : str | None
        Request label; unlabelled requests match ``"default"``.

    Returns
    -------
    bool
        ``True`` when the handler must run.
    """
    if always_run is None or always_run is False:
        return False
    if always_run is True:
        return True
    labels = [always_run] if isinstance(always_run, str) else list(always_run)
    return (label or DEFAULT_LABEL) in labels


def _as_items(data: DataItem | list[DataItem]) -> list[DataItem]:
    return list(data) if isinstance(data, list) else [data]


async def teach_items(*, scope: RequestScope, data: DataItem | list[DataItem]) -> int:
    """
    Teach every item of ``data`` under the scope's URL if the scope allows it.

    Returns
    -------
    int
        Number of items the service accepted.
    """
    if not scope.should_teach:
        return 0
    accepted = 0
    for item in _as_items(data):
        response = await scope.client.teach(scope.url, item)
        accepted += response.learned if response.accepted else 0
    log.debug(event="Learned from pushed data", url=scope.url, accepted=accepted)
    return accepted


def intercept_push_data(original: PushData, *, scope: RequestScope) -> PushData:
    """
    Wrap a request's data sink so pushed items are taught before being forwarded.

    Parameters
    ----------
    original : PushData
        The host's sink.
    scope : RequestScope
        Scope of the request owning the sink.

    Returns
    -------
    PushData
        Intercepting sink with the same call signature.
    """

    @functools.wraps(wrapped=original)
    async def push_data(data: DataItem | list[DataItem], *args: t.Any, **kwargs: t.Any) -> t.Any:
        await teach_items(scope=scope, data=data)
        return await original(data, *args, **kwargs)

    return push_data


async def push_data(
    data: DataItem | list[DataItem],
    dataset: t.Any,
    dataset_name: str | None = None,
) -> None:
    """
    Push data to a dataset, teaching it first when called inside an enhanced request.

    Parameters
    ----------
    data : dict | list[dict]
        Item or items to store.
    dataset : typing.Any
        Dataset instance or class exposing ``push_data`` (and ``open`` for named datasets).
    dataset_name : str | None, optional
        Name of the dataset to open before pushing.

    Examples
    --------
    >>> async def handler(context):
    ...     await push_data({"title": "Example"}, Dataset)
    ...     await push_data({"title": "Example"}, Dataset, "products")
    """
    scope = get_current_scope()
    if scope is not None:
        await teach_items(scope=scope, data=data)

    target: DatasetLike = dataset
    if dataset_name and hasattr(dataset, "open"):
        target = await dataset.open(name=dataset_name)
    await target.push_data(data)
