# app/lib/steps.py
"""
Checkpointed step execution on top of the relational store.

A run is identified by a `run_key` (e.g. "generate-book:<order_id>"). Each named
step inside a run executes until it succeeds once; its JSON result is recorded in
`step_runs` and returned as-is on every later invocation of the same run, so a
re-delivered trigger replays the controller from the top without repeating side
effects.

`sleep()` suspends the run: it records a wake-up time, asks the scheduler for a
continuation (a delayed Cloud Task to the same worker endpoint) and raises
`Suspended`. Nothing is held while suspended.
"""
from __future__ import annotations

import random
import time
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import delete, select

from app.config import Config
from app.lib.db import get_db_session, insert_ignore
from app.lib.models import StepRun
from app.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

Scheduler = Callable[[float], None]


class NonRetriableError(Exception):
    """Unrecoverable input or policy failure. Never retried by the step runner or the queue."""


class Suspended(Exception):
    """The run is sleeping; a continuation has been scheduled."""

    def __init__(self, step_name: str, resume_in: float):
        super().__init__(f"suspended at {step_name}; resume in {resume_in:.1f}s")
        self.step_name = step_name
        self.resume_in = resume_in


_MISSING = object()


class StepRunner:
    def __init__(
        self,
        run_key: str,
        cfg: Config,
        *,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
        sleeper: Callable[[float], None] = time.sleep,
    ):
        self.run_key = run_key
        self.cfg = cfg
        self.scheduler = scheduler
        self.clock = clock
        self.sleeper = sleeper

    # -------------------------------------------------------------------
    # Checkpoint table
    # -------------------------------------------------------------------

    def _load(self, name: str) -> Optional[StepRun]:
        with get_db_session() as s:
            return s.scalars(
                select(StepRun).where(StepRun.run_key == self.run_key, StepRun.step_name == name)
            ).first()

    def _record(self, name: str, *, result: Any = None, wake_at: Optional[float] = None) -> StepRun:
        with get_db_session() as s:
            insert_ignore(s, StepRun, {
                "run_key": self.run_key,
                "step_name": name,
                "result": result,
                "wake_at": wake_at,
            })
        # a concurrent worker may have recorded first; its value wins
        return self._load(name)

    def recorded(self, name: str, default: Any = None) -> Any:
        row = self._load(name)
        return default if row is None else row.result

    def forget(self, name: str) -> bool:
        with get_db_session() as s:
            res = s.execute(
                delete(StepRun).where(StepRun.run_key == self.run_key, StepRun.step_name == name)
            )
            return res.rowcount > 0

    def forget_prefix(self, prefix: str) -> int:
        """Delete every checkpoint whose name starts with `prefix` (e.g. one page's attempts)."""
        with get_db_session() as s:
            res = s.execute(
                delete(StepRun).where(StepRun.run_key == self.run_key, StepRun.step_name.startswith(prefix))
            )
            return res.rowcount

    # -------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------

    def run(self, name: str, fn: Callable[[], T], *, retries: Optional[int] = None) -> T:
        """
        Execute `fn` once per run. Transient failures are retried with exponential
        backoff; NonRetriableError propagates immediately.
        """
        row = self._load(name)
        if row is not None:
            log.debug(f"[{self.run_key}] step {name} replayed from checkpoint")
            return row.result

        attempts = (self.cfg.step_max_retries if retries is None else retries) + 1
        delay = self.cfg.step_retry_delay
        result: Any = _MISSING
        for attempt in range(1, attempts + 1):
            try:
                result = fn()
                break
            except (NonRetriableError, Suspended):
                raise
            except Exception as e:
                if attempt >= attempts:
                    log.error(f"[{self.run_key}] step {name} failed after {attempt} attempts: {e}")
                    raise
                wait = delay * (2 ** (attempt - 1)) + random.uniform(0, 0.5) if delay > 0 else 0
                log.warning(f"[{self.run_key}] step {name} attempt {attempt}/{attempts} failed: {e}; retrying in {wait:.1f}s")
                if wait:
                    self.sleeper(wait)

        stored = self._record(name, result=result)
        log.debug(f"[{self.run_key}] step {name} recorded")
        return stored.result

    def sleep(self, name: str, seconds: float) -> None:
        """Suspend the run until `seconds` after the first visit of this step."""
        now = self.clock()
        row = self._load(name)
        if row is None:
            row = self._record(name, wake_at=now + seconds)
        remaining = (row.wake_at or 0) - now
        if remaining > 0:
            # woke early (redelivery); ask again for the remainder
            self._suspend(name, remaining)
        log.debug(f"[{self.run_key}] sleep {name} elapsed")

    def _suspend(self, name: str, remaining: float) -> None:
        if self.scheduler is None:
            raise NonRetriableError(f"step {name} needs a scheduler to suspend")
        self.scheduler(remaining)
        log.info(f"[{self.run_key}] suspended at {name} for {remaining:.1f}s")
        raise Suspended(name, remaining)


def direct(name: str, fn: Callable[[], T]) -> T:
    """Checkpoint callable that simply runs the step (no persistence)."""
    return fn()
