"""
Bounded status polling.

Every wait in stackman goes through :func:`wait_for_state`: a resource is
fetched at a fixed interval until it reaches a terminal state or the
attempts run out. There is no backoff and no unbounded wait.
"""

import enum
import time
from typing import Any, Callable, Iterable, TypeVar

from stackman import log
from stackman.exceptions import ResourceErrorState, ResourceTimeoutError

T = TypeVar('T')


class TerminalOutcome(enum.Enum):
    PENDING = 'pending'
    SUCCESS = 'success'
    FAILED = 'failed'


def status_classifier(success: Iterable[str],
                      failure: Iterable[str] = ('ERROR',)) -> Callable[[Any], TerminalOutcome]:
    """
    Build a classifier on the ``status`` attribute of a resource.

    The comparison is case insensitive.

    Args:
        success: the statuses that end the wait successfully
        failure: the statuses that end the wait with an error

    Returns:
        a function mapping a resource to a :class:`TerminalOutcome`
    """
    success = {s.lower() for s in success}
    failure = {s.lower() for s in failure}

    def classify(resource: Any) -> TerminalOutcome:
        status = (getattr(resource, 'status', '') or '').lower()
        if status in failure:
            return TerminalOutcome.FAILED
        if status in success:
            return TerminalOutcome.SUCCESS
        return TerminalOutcome.PENDING

    return classify


def wait_for_state(fetch: Callable[[], T],
                   is_terminal: Callable[[T], TerminalOutcome],
                   interval: float = 10.0,
                   max_attempts: int = 30,
                   label: str = 'resource',
                   sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Poll a resource until it reaches a terminal state.

    *fetch* is called exactly *max_attempts* times at most, with a sleep of
    *interval* seconds between two attempts (not after the last one).
    Errors raised by *fetch* are propagated unchanged.

    Args:
        fetch: returns the current snapshot of the resource
        is_terminal: classifies a snapshot
        interval: seconds between two attempts
        max_attempts: the maximum number of fetches
        label: a description of the resource used in messages
        sleep: the sleep function

    Returns:
        the first snapshot classified as SUCCESS

    Raises:
        ResourceErrorState: as soon as a snapshot is classified as FAILED
        ResourceTimeoutError: when no terminal state was observed, carries
          the last snapshot
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    resource = None
    for attempt in range(1, max_attempts + 1):
        resource = fetch()
        outcome = is_terminal(resource)
        status = getattr(resource, 'status', None)
        log.debug(f"{label}: attempt {attempt}/{max_attempts}, status {status}")

        if outcome is TerminalOutcome.SUCCESS:
            return resource
        if outcome is TerminalOutcome.FAILED:
            raise ResourceErrorState(
                f"{label} entered error state (status {status})", resource=resource)

        if attempt < max_attempts:
            sleep(interval)

    raise ResourceTimeoutError(
        f"timed out waiting for {label} after {max_attempts} attempts "
        f"(last status {getattr(resource, 'status', None)})",
        resource=resource)
