"""Optimistic command objects for callers that keep a local view of the store.

A command mutates the caller's view first, performs the real operation, then
either reconciles the view with the authoritative result or rolls the local
change back. Callers receive a :class:`CommandResult` instead of an exception.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, MutableMapping, Optional, TypeVar

from .errors import DriveError
from .state import StateError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CommandResult(Generic[T]):
    """Outcome of an optimistic command."""

    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None


class OptimisticCommand(Generic[T]):
    """Apply a local change, run the operation, then reconcile or roll back."""

    def __init__(
        self,
        *,
        apply: Callable[[], None],
        rollback: Callable[[], None],
        operation: Callable[[], T],
        reconcile: Optional[Callable[[T], None]] = None,
        on_success: Optional[Callable[[T], None]] = None,
        on_failure: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self._apply = apply
        self._rollback = rollback
        self._operation = operation
        self._reconcile = reconcile
        self._on_success = on_success
        self._on_failure = on_failure

    def execute(self) -> CommandResult[T]:
        self._apply()
        try:
            value = self._operation()
        except (DriveError, StateError, OSError) as exc:
            LOGGER.info("Optimistic command failed, rolling back: %s", exc)
            self._rollback()
            if self._on_failure is not None:
                self._on_failure(exc)
            return CommandResult(ok=False, error=exc)

        if self._reconcile is not None:
            self._reconcile(value)
        if self._on_success is not None:
            self._on_success(value)
        return CommandResult(ok=True, value=value)


def set_tags_command(
    view: MutableMapping[str, list[str]],
    path: str,
    labels: Iterable[str],
    operation: Callable[[str, list[str]], dict[str, list[str]]],
) -> OptimisticCommand[dict[str, list[str]]]:
    """Build a command that updates ``view`` with new labels for ``path``.

    Args:
        view: Caller-held tag map that is updated in place.
        path: Relative path being tagged.
        labels: Labels to set; empty removes the path from the view.
        operation: Performs the real update and returns the full tag map,
            for example ``Drive.set_tags``.
    """

    wanted = list(labels)
    snapshot = copy.deepcopy(dict(view))

    def apply() -> None:
        if wanted:
            view[path] = list(wanted)
        else:
            view.pop(path, None)

    def rollback() -> None:
        view.clear()
        view.update(snapshot)

    def reconcile(result: dict[str, list[str]]) -> None:
        view.clear()
        view.update(result)

    return OptimisticCommand(
        apply=apply,
        rollback=rollback,
        operation=lambda: operation(path, wanted),
        reconcile=reconcile,
    )


__all__ = ["CommandResult", "OptimisticCommand", "set_tags_command"]
