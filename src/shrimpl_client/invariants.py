"""Invariant markers for the Shrimpl client layer."""

from __future__ import annotations

from typing import NoReturn

from shrimpl_client.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The keyword payload is attached to the raised ``NeverThrown`` for
    diagnostics; it is not otherwise interpreted.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)
