"""
F3 Sidecar: Supervised Run Loop

Keeps the engine's blocking `run` alive across transient failures:

  - run returns normally  → terminate, report success
  - run raises            → count a retry, log it with the attempt
                            number, sleep a flat backoff, run again
  - retries exhausted     → terminate, report failure (the last error
                            is kept on the result, never re-raised)
  - ContractIncomplete    → configuration defect, re-raised at once

States:
  IDLE → RUNNING → (SUCCEEDED | FAILED) → [RETRYING → RUNNING]* → TERMINATED

With the default policy (5 retries, 10s backoff) an engine that fails
six times in a row is run six times, sleeps five times and the
supervisor reports failure.

Cancellation: stop() wakes the backoff sleep and prevents the next
attempt. An attempt already inside engine.run() is not interrupted; the
engine owns that call.

Usage:
    from sidecar.supervisor import Supervisor, RetryPolicy

    sup = Supervisor(engine, params, RetryPolicy(max_retries=5))
    result = sup.run()            # blocks on the calling thread
    ok = bool(result)

    sup.start()                   # or: dedicated daemon thread
    result = sup.wait()
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sidecar.engine import EngineHandle, RunParams
from sidecar.errors import ConfigError, ContractIncomplete

logger = logging.getLogger("f3.sidecar.supervisor")


class SupervisorState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRYING = "retrying"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a flat (not exponential) backoff."""
    max_retries: int = 5
    backoff_seconds: float = 10.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigError("supervisor.max_retries must be >= 0")
        if self.backoff_seconds < 0:
            raise ConfigError("supervisor.backoff_seconds must be >= 0")


DEFAULT_POLICY = RetryPolicy()


@dataclass
class SupervisorResult:
    """Outcome of a supervised run. Truthy when the engine exited cleanly."""
    succeeded: bool
    attempts: int
    retries: int
    last_error: BaseException | None = None
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    attempt_log: list[dict[str, Any]] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.succeeded


class Supervisor:
    """
    Retry state machine around EngineHandle.run.

    The supervisor is the only component that drives the engine. State
    and retry count are readable from other threads at any time.
    """

    def __init__(
        self,
        engine: EngineHandle,
        params: RunParams,
        policy: RetryPolicy | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ):
        self.engine = engine
        self.params = params
        self.policy = policy or DEFAULT_POLICY
        self._stop = threading.Event()
        self._sleep_fn = sleep_fn or self._wait_unless_stopped
        self._lock = threading.Lock()
        self._state = SupervisorState.IDLE
        self._retries = 0
        self._thread: threading.Thread | None = None
        self._result: SupervisorResult | None = None
        self._error: BaseException | None = None

    # ── Introspection ─────────────────────────────────────────

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def retries(self) -> int:
        """Retries scheduled so far; the final failed attempt is not one."""
        with self._lock:
            return self._retries

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _set_state(self, state: SupervisorState) -> None:
        with self._lock:
            self._state = state

    # ── Cancellation ──────────────────────────────────────────

    def stop(self) -> None:
        """Wake the backoff sleep and skip any further attempts."""
        self._stop.set()

    def _wait_unless_stopped(self, seconds: float) -> None:
        self._stop.wait(seconds)

    # ── Loop ──────────────────────────────────────────────────

    def run(self) -> SupervisorResult:
        """
        Drive the engine until it exits cleanly or the budget runs out.

        Raises:
            ContractIncomplete: if the engine reports an unbound capability.
        """
        with self._lock:
            self._retries = 0
        attempt_log: list[dict[str, Any]] = []
        last_error: BaseException | None = None
        total_t0 = time.time()
        n_retry = 0

        while True:
            if self._stop.is_set():
                logger.info("Supervisor stopped before attempt %d", len(attempt_log) + 1)
                return self._finish(
                    False, attempt_log, n_retry, last_error, total_t0, cancelled=True,
                )

            entry: dict[str, Any] = {"attempt": len(attempt_log) + 1}
            self._set_state(SupervisorState.RUNNING)
            t0 = time.time()
            try:
                self.engine.run(self.params)
            except ContractIncomplete:
                self._set_state(SupervisorState.TERMINATED)
                logger.critical("Engine rejected the capability contract; not retrying")
                raise
            except Exception as e:
                last_error = e
                n_retry += 1
                entry["latency_s"] = round(time.time() - t0, 2)
                entry["status"] = "failed"
                entry["error"] = str(e)[:200]
                attempt_log.append(entry)
                self._set_state(SupervisorState.FAILED)

                if n_retry > self.policy.max_retries:
                    logger.error(
                        "F3 failed %d times, giving up. error=%s",
                        n_retry, e,
                        extra={"structured": {"attempt": n_retry, "status": "exhausted"}},
                    )
                    return self._finish(False, attempt_log, n_retry, last_error, total_t0)

                logger.error(
                    "Unexpected F3 failure, retrying(%d) in %ss... error=%s",
                    n_retry, _fmt_seconds(self.policy.backoff_seconds), e,
                    extra={"structured": {
                        "attempt": n_retry,
                        "backoff_s": self.policy.backoff_seconds,
                    }},
                )
                with self._lock:
                    self._state = SupervisorState.RETRYING
                    self._retries = n_retry
                entry["backoff_s"] = self.policy.backoff_seconds
                self._sleep_fn(self.policy.backoff_seconds)
                continue

            entry["latency_s"] = round(time.time() - t0, 2)
            entry["status"] = "success"
            attempt_log.append(entry)
            self._set_state(SupervisorState.SUCCEEDED)
            logger.info("F3 exited cleanly after %d attempt(s)", len(attempt_log))
            return self._finish(True, attempt_log, n_retry, last_error, total_t0)

    def _finish(
        self,
        succeeded: bool,
        attempt_log: list[dict[str, Any]],
        n_retry: int,
        last_error: BaseException | None,
        total_t0: float,
        cancelled: bool = False,
    ) -> SupervisorResult:
        self._set_state(SupervisorState.TERMINATED)
        attempts = len(attempt_log)
        return SupervisorResult(
            succeeded=succeeded,
            attempts=attempts,
            retries=max(0, attempts - 1),
            last_error=last_error,
            cancelled=cancelled,
            elapsed_seconds=time.time() - total_t0,
            attempt_log=attempt_log,
        )

    # ── Dedicated thread ──────────────────────────────────────

    def start(self) -> threading.Thread:
        """Run the loop on a daemon thread. Returns the thread."""
        if self._thread is not None:
            raise RuntimeError("Supervisor already started")
        self._thread = threading.Thread(
            target=self._run_in_thread, name="f3-supervisor", daemon=True,
        )
        self._thread.start()
        return self._thread

    def _run_in_thread(self) -> None:
        try:
            self._result = self.run()
        except BaseException as e:
            self._error = e

    def wait(self, timeout: float | None = None) -> SupervisorResult | None:
        """
        Join the supervisor thread.

        Returns None if the timeout elapsed first. Re-raises whatever
        escaped the loop (ContractIncomplete).
        """
        if self._thread is None:
            raise RuntimeError("Supervisor not started")
        self._thread.join(timeout)
        if self._thread.is_alive():
            return None
        if self._error is not None:
            raise self._error
        return self._result


def _fmt_seconds(seconds: float) -> str:
    return f"{seconds:g}"
