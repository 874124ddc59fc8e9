"""Retry state machine for webhook dispatch.

The transition functions are pure: they decide the next step from the
current state and the classified outcome of an attempt, and leave the side
effects (HTTP, provisioning, fallback lookup) to the client.

    Attempting(1) --404--> ResyncAndRetry --> Attempting(2)
    Attempting(2) --404--> ResolveFallbackAndRetry --> Attempting(3, fallback)
    Attempting(n) --2xx--> Succeeded
    anything else -------> Failed
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"


def classify_status(status_code: int) -> AttemptStatus:
    if 200 <= status_code < 300:
        return AttemptStatus.SUCCESS
    if status_code == 404:
        return AttemptStatus.NOT_FOUND
    if status_code in (401, 403):
        return AttemptStatus.UNAUTHORIZED
    return AttemptStatus.HTTP_ERROR


@dataclass(frozen=True)
class RetryPolicy:
    """Tunable recovery steps for a 404 from the webhook.

    With the defaults the first 404 re-provisions the workflow and the
    second switches to the fallback URL; each step is used at most once.
    """

    max_attempts: int = 3
    resync_on_not_found: bool = True
    fallback_on_not_found: bool = True


@dataclass(frozen=True)
class Attempting:
    attempt: int
    use_fallback: bool = False
    resynced: bool = False


@dataclass(frozen=True)
class ResyncAndRetry:
    next_attempt: int


@dataclass(frozen=True)
class ResolveFallbackAndRetry:
    next_attempt: int
    resynced: bool = False


@dataclass(frozen=True)
class Succeeded:
    attempt: int


@dataclass(frozen=True)
class Failed:
    attempt: int
    status: AttemptStatus


DispatchState = (
    Attempting | ResyncAndRetry | ResolveFallbackAndRetry | Succeeded | Failed
)

INITIAL_STATE = Attempting(attempt=1)


def after_attempt(
    state: Attempting, outcome: AttemptStatus, policy: RetryPolicy,
) -> DispatchState:
    """Next state once attempt ``state.attempt`` finished with ``outcome``."""
    if outcome is AttemptStatus.SUCCESS:
        return Succeeded(state.attempt)
    if outcome is not AttemptStatus.NOT_FOUND or state.attempt >= policy.max_attempts:
        return Failed(state.attempt, outcome)
    if policy.resync_on_not_found and not state.resynced:
        return ResyncAndRetry(next_attempt=state.attempt + 1)
    if policy.fallback_on_not_found and not state.use_fallback:
        return ResolveFallbackAndRetry(
            next_attempt=state.attempt + 1, resynced=state.resynced,
        )
    return Failed(state.attempt, outcome)


def after_resync(state: ResyncAndRetry) -> Attempting:
    return Attempting(attempt=state.next_attempt, resynced=True)


def after_fallback(
    state: ResolveFallbackAndRetry, resolved: bool,
) -> Attempting | Failed:
    if not resolved:
        return Failed(state.next_attempt - 1, AttemptStatus.NOT_FOUND)
    return Attempting(
        attempt=state.next_attempt, use_fallback=True, resynced=state.resynced,
    )
