"""Step execution engine.

Walks the step graph in topological order on a single control thread. For
each step:

1. If any dependency failed (or was itself blocked) the step is skipped as
   blocked and neither its check nor its action runs.
2. The idempotency check runs once; if the effect is already present the
   step is skipped as satisfied.
3. Otherwise the action runs, up to ``retry.max_attempts`` times, with
   backoff between retryable failures. The check is not re-run between
   attempts.

Every transition is appended to the progress store before the next one
happens. Step failures are recorded, never raised: the caller inspects
``Run.state`` and the failed outcomes.
"""

from collections.abc import Callable
from datetime import datetime

from ..constants import STDERR_TAIL_LINES
from ..errors import CommandFailedError, ExecutionError, RunFinalizedError, StepCancelledError
from ..logging import StepLogger, current_log_file, get_logger
from ..models import (
    CommandResult,
    ErrorInfo,
    ErrorKind,
    Run,
    RunState,
    SkipReason,
    StepOutcome,
    StepState,
)
from ..services.runner import CancelToken, CommandRunner
from .context import StepContext
from .lock_manager import acquire_lock, release_lock, update_heartbeat
from .progress_store import ProgressStore
from .registry import Step, StepRegistry
from .run_manager import generate_run_id


class Orchestrator:
    """Executes a registry of steps against a persisted run.

    Args:
        registry: Step definitions; ordered (and validated) at construction
        store: Progress store receiving every transition
        runner: Command runner handed to step contexts
        cancel: Cancellation token (set by the CLI on SIGINT)
        sleep: Backoff sleeper; returns True if the wait was interrupted.
            Defaults to waiting on the cancel token.
        logger: Logger for step banners and outcomes

    Raises:
        CycleDetectedError: If the registry is not a DAG
    """

    def __init__(
        self,
        registry: StepRegistry,
        store: ProgressStore,
        runner: CommandRunner | None = None,
        cancel: CancelToken | None = None,
        sleep: Callable[[float], bool | None] | None = None,
        logger: StepLogger | None = None,
    ) -> None:
        self.registry = registry
        self.order: list[Step] = registry.topological_order()
        self.store = store
        self.log = logger or get_logger("orchestrator")
        self.runner = runner or CommandRunner(logger=self.log)
        self.cancel = cancel or CancelToken()
        self._sleep = sleep or self.cancel.wait
        self._seq = 0

    # ------------------------------------------------------------------
    # Run construction
    # ------------------------------------------------------------------

    def _fresh_run_id(self, recipe: str) -> str:
        return generate_run_id(recipe, taken=lambda run_id: self.store.run_dir(run_id).exists())

    def new_run(self, run_id: str | None = None, recipe: str = "custom") -> Run:
        """Create a fresh run with every step pending."""
        return Run(
            run_id=run_id or self._fresh_run_id(recipe),
            recipe=recipe,
            outcomes=[StepOutcome(step=step.name) for step in self.order],
        )

    def prepare_resume(self, run: Run) -> Run:
        """Prepare a persisted run for another pass.

        - completed: returned unchanged; there is nothing to do.
        - aborted: finalized runs are immutable, so a new run is created that
          carries over succeeded and satisfied steps and re-evaluates the rest.
        - in_progress (crashed): steps caught in ``running`` go back to
          ``pending`` so their idempotency check is re-evaluated.

        Steps defined now but unknown to the stored run are added as pending;
        outcomes are reordered to match the current topological order.
        """
        if run.state == RunState.COMPLETED:
            return run

        if run.state == RunState.ABORTED:
            carried = {o.step: o for o in run.outcomes if o.resolved}
            resumed = Run(
                run_id=self._fresh_run_id(run.recipe),
                recipe=run.recipe,
                resumed_from=run.run_id,
                outcomes=[
                    carried.get(step.name) or StepOutcome(step=step.name) for step in self.order
                ],
            )
            self.log.info(
                "Run %s was aborted; continuing as %s (%d step(s) carried over)",
                run.run_id,
                resumed.run_id,
                len(carried),
            )
            return resumed

        seq = run.last_seq()
        outcomes: list[StepOutcome] = []
        for step in self.order:
            outcome = run.outcome(step.name)
            if outcome is None:
                outcome = StepOutcome(step=step.name)
            elif outcome.state == StepState.RUNNING:
                seq += 1
                self.log.warning(
                    "Step %s was running when the previous process stopped; re-verifying",
                    step.name,
                )
                outcome = StepOutcome(step=step.name, seq=seq)
            outcomes.append(outcome)
        run.outcomes = outcomes
        run.updated_at = datetime.now()
        return run

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, run: Run) -> Run:
        """Execute every eligible step of ``run``.

        Returns:
            The run with its final state (completed or aborted)

        Raises:
            RunAlreadyInProgressError: If another process holds the run lock
            RunFinalizedError: If ``run`` is already completed or aborted
        """
        if run.state.is_final:
            raise RunFinalizedError(f"Run {run.run_id} is already {run.state.value}")

        run_dir = self.store.run_dir(run.run_id)
        acquire_lock(run_dir, run.run_id, f"execute {run.recipe}")
        try:
            self._seq = run.last_seq()
            for step in self.order:
                if run.outcome(step.name) is None:
                    run.put(StepOutcome(step=step.name))
            self.store.save(run)
            self.log.info("Run %s: %d step(s)", run.run_id, len(self.order))

            for step in self.order:
                update_heartbeat(run_dir)
                outcome = run.outcome(step.name)
                assert outcome is not None
                if outcome.state.is_terminal:
                    self.log.debug("Step %s already %s", step.name, outcome.state.value)
                    continue
                if self.cancel.cancelled:
                    self.log.warning("Cancelled; leaving %s pending", step.name)
                    continue
                self._evaluate(run, step)

            interrupted = self.cancel.cancelled and run.count(StepState.PENDING) > 0
            failed = run.count(StepState.FAILED) > 0
            run.state = RunState.ABORTED if failed or interrupted else RunState.COMPLETED
            run.updated_at = datetime.now()
            self.store.save(run)
            self.log.info("Run %s %s", run.run_id, run.state.value)
            return run
        finally:
            release_lock(run_dir)

    def _evaluate(self, run: Run, step: Step) -> None:
        deps = [run.outcome(dep) for dep in step.depends_on]
        blocking = [o.step for o in deps if o is not None and o.blocks_dependents]
        if blocking:
            self.log.warning("Skipping %s: blocked by %s", step.name, ", ".join(blocking))
            now = datetime.now()
            self._record(
                run,
                step.name,
                state=StepState.SKIPPED,
                skip_reason=SkipReason.BLOCKED,
                started_at=now,
                ended_at=now,
            )
            return
        unresolved = [dep for dep, o in zip(step.depends_on, deps) if o is None or not o.resolved]
        if unresolved:
            # Only reachable when an upstream step was left pending by cancellation
            self.log.warning("Leaving %s pending: waiting on %s", step.name, ", ".join(unresolved))
            return

        step_log = self.log.bind(step.name)
        self.log.step("STEP: %s", step.title)
        started = datetime.now()

        if step.check is not None:
            satisfied = self._run_check(run, step, step_log)
            if satisfied is None:
                return
            if satisfied:
                step_log.info("Already satisfied, skipping")
                self._record(
                    run,
                    step.name,
                    state=StepState.SKIPPED,
                    skip_reason=SkipReason.SATISFIED,
                    started_at=started,
                    ended_at=datetime.now(),
                )
                return

        policy = step.retry
        for attempt in range(1, policy.max_attempts + 1):
            self._record(
                run, step.name, state=StepState.RUNNING, attempts=attempt, started_at=started
            )
            error = self._attempt(run, step, attempt, step_log)
            if error is None:
                step_log.info("Succeeded (attempt %d/%d)", attempt, policy.max_attempts)
                self._record(run, step.name, state=StepState.SUCCEEDED, ended_at=datetime.now())
                return

            retryable = policy.is_retryable(error.kind) and attempt < policy.max_attempts
            if not retryable:
                self._fail(run, step, error, step_log)
                return

            delay = policy.delay(attempt)
            step_log.warning(
                "Attempt %d/%d failed (%s): %s; retrying in %.1fs",
                attempt,
                policy.max_attempts,
                error.kind.value,
                error.message,
                delay,
            )
            self._record(run, step.name, state=StepState.RUNNING, last_error=error)
            if self._sleep(delay) or self.cancel.cancelled:
                self._fail(run, step, self._cancelled_error(run, attempt), step_log)
                return

    def _run_check(self, run: Run, step: Step, step_log: StepLogger) -> bool | None:
        """Evaluate the idempotency check; None means the run was cancelled."""
        assert step.check is not None
        ctx = StepContext(step.name, self.runner, step_log, self.cancel, 0, step.timeout)
        try:
            return bool(step.check(ctx))
        except (StepCancelledError, KeyboardInterrupt):
            self.cancel.cancel()
            self._fail(run, step, self._cancelled_error(run, 0), step_log)
            return None
        except Exception as e:
            step_log.warning("Idempotency check raised %s: %s; treating as not satisfied",
                             type(e).__name__, e)
            return False

    def _attempt(
        self, run: Run, step: Step, attempt: int, step_log: StepLogger
    ) -> ErrorInfo | None:
        """Run the action once; return None on success or the error summary."""
        ctx = StepContext(step.name, self.runner, step_log, self.cancel, attempt, step.timeout)
        result: CommandResult | None
        try:
            result = step.action(ctx)
        except KeyboardInterrupt:
            self.cancel.cancel()
            return self._cancelled_error(run, attempt)
        except CommandFailedError as e:
            assert e.result is not None
            return self._result_error(run, step, attempt, e.result)
        except ExecutionError as e:
            kind = ErrorKind.CANCELLED if self.cancel.cancelled else e.kind
            return self._error(run, kind, e.message, attempt, e.result)
        except Exception as e:
            step_log.exception("Action raised unexpectedly")
            return self._error(run, ErrorKind.FATAL, f"{type(e).__name__}: {e}", attempt)

        if result is None or step.retry.is_success(result):
            return None
        return self._result_error(run, step, attempt, result)

    def _result_error(
        self, run: Run, step: Step, attempt: int, result: CommandResult
    ) -> ErrorInfo:
        kind = step.retry.classify_failure(result)
        if kind is ErrorKind.TIMEOUT:
            message = f"Timed out after {result.duration:.0f}s: {result.command}"
        elif kind is ErrorKind.CANCELLED:
            message = f"Cancelled: {result.command}"
        else:
            message = f"Exited with {result.exit_code}: {result.command}"
        return self._error(run, kind, message, attempt, result)

    def _error(
        self,
        run: Run,
        kind: ErrorKind,
        message: str,
        attempt: int,
        result: CommandResult | None = None,
    ) -> ErrorInfo:
        log_file = current_log_file() or self.store.log_path(run.run_id)
        return ErrorInfo(
            kind=kind,
            message=message,
            attempt=attempt,
            exit_code=result.exit_code if result else None,
            stderr_tail=result.stderr_tail(STDERR_TAIL_LINES) if result else "",
            log_path=str(log_file),
        )

    def _cancelled_error(self, run: Run, attempt: int) -> ErrorInfo:
        return self._error(run, ErrorKind.CANCELLED, "Cancelled by operator", attempt)

    def _fail(self, run: Run, step: Step, error: ErrorInfo, step_log: StepLogger) -> None:
        step_log.error("Failed on attempt %d (%s): %s", error.attempt, error.kind.value,
                       error.message)
        if error.stderr_tail:
            step_log.error("stderr:\n%s", error.stderr_tail)
        downstream = self.registry.dependents(step.name)
        if downstream:
            step_log.error("Blocks: %s", ", ".join(sorted(downstream)))
        self._record(
            run, step.name, state=StepState.FAILED, last_error=error, ended_at=datetime.now()
        )

    def _record(self, run: Run, name: str, **updates: object) -> StepOutcome:
        """Apply a transition, persist it, and return the new outcome."""
        self._seq += 1
        current = run.outcome(name) or StepOutcome(step=name)
        outcome = current.model_copy(update={**updates, "seq": self._seq})
        run.put(outcome)
        self.store.append_outcome(run.run_id, outcome)
        return outcome
