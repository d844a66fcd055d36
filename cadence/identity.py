"""Stable identities for units of work.

A test identity correlates runs of the same unit of work across time, so it
must not depend on object addresses or run order.
"""

from __future__ import annotations

import functools
from typing import Any, Callable

DISPLAY_NAME_PATTERN = "{test_id} [{phase} {current} of {total}]"


def test_id_for(unit: Callable[..., Any], repetition: int | None = None) -> str:
    """Return ``module.qualname`` for a callable, optionally disambiguated.

    ``functools.partial`` objects resolve to the wrapped function.
    """
    target = unit
    while isinstance(target, functools.partial):
        target = target.func
    module = getattr(target, "__module__", None) or type(target).__module__
    qualname = getattr(target, "__qualname__", None) or type(target).__qualname__
    test_id = f"{module}.{qualname}"
    if repetition is not None:
        test_id = f"{test_id}[{repetition}]"
    return test_id


# keep pytest from collecting this when imported into test modules
test_id_for.__test__ = False


def display_name(test_id: str, phase: str, current: int, total: int) -> str:
    return DISPLAY_NAME_PATTERN.format(
        test_id=test_id, phase=phase, current=current, total=total
    )


__all__ = ["DISPLAY_NAME_PATTERN", "display_name", "test_id_for"]
