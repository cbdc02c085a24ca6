"""Precheck gates evaluated before a mutating call."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from .cancel import CancelToken
from .client import Client, overlay
from .expand import expand_body, expand_path, expand_values
from .locator import expand_locator
from .locks import LockRegistry
from .models import PrecheckStep
from .poll import Poller, PollOptions

logger = logging.getLogger(__name__)

type Unlock = Callable[[], None]


def _api_poller(
    client: Client,
    step: PrecheckStep,
    *,
    path: str,
    header: Mapping[str, str],
    query: Mapping[str, list[str]],
    body: Any,
) -> Poller:
    api = step.api
    assert api is not None
    target = expand_path(api.path, path, body) if api.path else path
    options = PollOptions(
        status_locator=expand_locator(api.status_locator, body),
        success=api.status.success,
        pending=tuple(api.status.pending),
        header=expand_values(overlay(header, api.header), body),
        query=expand_values(overlay(query, api.query), body),
        default_delay=api.default_delay_sec,
    )
    return Poller.for_precheck(client.url(target), options)


def run_prechecks(
    client: Client,
    steps: Sequence[PrecheckStep],
    *,
    locks: LockRegistry,
    path: str,
    header: Mapping[str, str] | None = None,
    query: Mapping[str, list[str]] | None = None,
    body: Any = None,
    cancel: CancelToken | None = None,
) -> Unlock:
    """Run steps in order and return a thunk releasing acquired mutexes.

    ``path`` is the default target for API checks. Mutexes are released
    in reverse order, and all of them are released if a later step fails.
    """
    cancel = cancel or CancelToken()
    held: list[str] = []

    def unlock() -> None:
        while held:
            locks.release(held.pop())

    try:
        for idx, step in enumerate(steps):
            if step.api is not None:
                logger.debug("Precheck %d: polling API", idx)
                poller = _api_poller(
                    client, step, path=path, header=header or {}, query=query or {}, body=body
                )
                poller.wait(client, cancel)
            elif step.mutex is not None:
                name = expand_body(step.mutex, body)
                logger.debug("Precheck %d: acquiring mutex '%s'", idx, name)
                locks.acquire(name, cancel)
                held.append(name)
    except Exception:
        unlock()
        raise
    return unlock


@contextmanager
def prechecked(
    client: Client,
    steps: Sequence[PrecheckStep],
    **kwargs: Any,
) -> Iterator[None]:
    """Context manager form of ``run_prechecks``."""
    unlock = run_prechecks(client, steps, **kwargs)
    try:
        yield
    finally:
        unlock()
