"""Explicit per-tier results and the pure precedence rules that combine them.

Each storage tier accessor returns one of:

* ``Ok(value)``      -- the call succeeded (``value`` may be ``None`` or empty)
* ``Unavailable()``  -- the tier was not attempted (disabled, unbound, offline)
* ``Err(reason)``    -- the tier was attempted and failed

Keeping "failed" and "succeeded with nothing" apart is what lets
``resolve_listing`` tell a transient remote failure from a genuinely empty
account.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Unavailable:
    reason: str = "remote store not enabled"


@dataclass(frozen=True)
class Err:
    reason: str


TierResult = Union[Ok[T], Unavailable, Err]


def resolve_record(remote: TierResult[T | None], local: TierResult[T | None]) -> T | None:
    """Choose the record to return from a single-key read.

    The remote tier is the source of truth whenever it produced a record.
    Otherwise (unavailable, failed, or no such record) the local value wins.
    """
    if isinstance(remote, Ok) and remote.value is not None:
        return remote.value
    if isinstance(local, Ok):
        return local.value
    return None


def resolve_listing(remote: TierResult[list[T]], local: TierResult[list[T]]) -> list[T]:
    """Choose the listing to return for an owner.

    A non-empty remote listing wins. A failed or unavailable remote falls
    back to the local listing. A remote that *succeeded* with zero rows also
    yields the local listing: the local keyspace is scoped to the same owner,
    so a brand-new account sees an empty list either way, while an account
    whose remote writes never landed still sees its local work.
    """
    if isinstance(remote, Ok) and remote.value:
        return list(remote.value)
    if isinstance(local, Ok):
        return list(local.value)
    return []
