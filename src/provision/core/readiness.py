"""Readiness waits expressed as ordinary steps.

A readiness step polls a probe at a fixed interval until it reports ready
or the time budget runs out. Every not-ready probe is a transient failure,
so the orchestrator's retry loop does the polling and the usual
exhausted-attempts path reports the timeout.
"""

from collections.abc import Callable, Iterable

from ..constants import PROBE_TIMEOUT
from ..errors import FatalExecutionError, TransientExecutionError
from .context import StepContext
from .registry import Step
from .retry import RetryPolicy

Probe = Callable[[StepContext], bool]
Guard = Callable[[StepContext], str | None]
Hook = Callable[[StepContext], None]


def readiness_step(
    name: str,
    probe: Probe,
    depends_on: Iterable[str] = (),
    timeout: float = 120.0,
    interval: float = 5.0,
    description: str = "",
    guard: Guard | None = None,
    on_not_ready: Hook | None = None,
    probe_timeout: float = PROBE_TIMEOUT,
) -> Step:
    """Build a step that waits until ``probe`` reports ready.

    Args:
        name: Step name
        probe: Returns True once the resource is ready
        depends_on: Upstream steps
        timeout: Total seconds to keep polling
        interval: Seconds between probes
        description: One-line summary
        guard: Optional check run after a failed probe; returning a message
            means waiting longer is pointless and fails the step as fatal
        on_not_ready: Optional nudge run after a failed probe (e.g. start a service)
        probe_timeout: Time budget for a single probe

    Returns:
        Step whose check and action both use ``probe``
    """

    def wait(ctx: StepContext) -> None:
        if probe(ctx):
            return
        if on_not_ready is not None:
            on_not_ready(ctx)
        if guard is not None:
            reason = guard(ctx)
            if reason:
                raise FatalExecutionError(reason)
        raise TransientExecutionError(f"{name}: not ready yet")

    return Step(
        name=name,
        action=wait,
        depends_on=tuple(depends_on),
        check=probe,
        retry=RetryPolicy.fixed(interval, timeout),
        timeout=probe_timeout,
        description=description,
    )
