"""
NoteMind Backend — Retry Engine
=================================

What:  Runs an async operation with exponential backoff + jitter and keeps an
       observable RetryState (attempt count, last error, whether another
       retry is possible).
Why:   Gemini calls fail transiently (timeouts, 5xx, quota bursts). A bounded
       number of spaced-out retries absorbs most of these; the state lets the
       caller show "retrying 2/3" and decide whether to offer a manual retry.
How:   tenacity.AsyncRetrying drives the loop:
           stop  = stop_after_attempt(max_retries)
           wait  = base * 2^(n-1) + uniform(0, jitter)
           retry = only while the call is retryable and the predicate agrees
       reraise=True, so the caller always receives the last original error.

Delay schedule with the defaults (base 1s, jitter up to 1s):
    attempt 1 fails → sleep 1-2s → attempt 2 fails → sleep 2-3s → attempt 3

Each RetryController owns one RetryState. Concurrent operations each get
their own controller; nothing is shared between them.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
RetryPredicate = Callable[[BaseException], bool]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryState:
    is_retrying: bool = False
    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None
    can_retry: bool = True


class RetryObserver:
    """
    Hooks for whoever presents retry progress. Override what you need;
    the defaults do nothing.
    """

    def on_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        """Called before sleeping ahead of retry number `attempt` (1-based)."""

    def on_max_retries_reached(self, error: BaseException) -> None:
        """Called once when the final allowed attempt has failed."""


class RetryController:
    """
    Retry driver plus its state.

    Example:
        controller = RetryController(observer=my_observer)
        text = await controller.execute_with_retry(lambda: llm.generate(prompt))
        controller.retry_state.retry_count   # 0 again after success
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        max_jitter_ms: Optional[int] = None,
        observer: Optional[RetryObserver] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.max_retries = max_retries if max_retries is not None else settings.ai_max_retries
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.base_delay = (
            base_delay_ms if base_delay_ms is not None else settings.ai_retry_base_delay_ms
        ) / 1000
        self.max_jitter = (
            max_jitter_ms if max_jitter_ms is not None else settings.ai_retry_max_jitter_ms
        ) / 1000
        self.observer = observer or RetryObserver()
        self._sleep = sleep
        self._state = RetryState(max_retries=self.max_retries)

    @property
    def retry_state(self) -> RetryState:
        """A copy; mutating it does not affect the controller."""
        return replace(self._state)

    def reset_retry(self) -> None:
        self._state = RetryState(max_retries=self.max_retries)

    async def manual_retry(
        self,
        operation: Operation,
        retryable: bool = True,
        should_retry: Optional[RetryPredicate] = None,
    ) -> T:
        """Start a fresh sequence after an exhausted one; the old counter is not inherited."""
        self._state.retry_count = 0
        self._state.can_retry = True
        return await self.execute_with_retry(operation, retryable, should_retry)

    async def execute_with_retry(
        self,
        operation: Operation,
        retryable: bool = True,
        should_retry: Optional[RetryPredicate] = None,
    ) -> T:
        """
        Run `operation` until it succeeds, is judged not retryable, or the
        attempt cap is reached.

        Args:
            operation:     Zero-argument coroutine function; called once per attempt.
            retryable:     False means exactly one attempt, whatever the error.
            should_retry:  Per-error veto, e.g. "only if the classifier says so".

        Raises:
            The last error raised by `operation`.
        """
        self.reset_retry()

        def _retry_allowed(exc: BaseException) -> bool:
            if not retryable or not isinstance(exc, Exception):
                return False
            return should_retry is None or should_retry(exc)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2)
            + wait_random(0, self.max_jitter),
            retry=retry_if_exception(_retry_allowed),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        attempt_number = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    self._state.is_retrying = attempt_number > 1
                    self._state.retry_count = attempt_number - 1
                    try:
                        result = await operation()
                    except Exception as e:
                        self._state.last_error = str(e) or type(e).__name__
                        self._state.can_retry = True
                        raise
        except Exception as e:
            self._state.is_retrying = False
            self._state.can_retry = False
            if attempt_number >= self.max_retries:
                # Exhausted state reads retry_count == max_retries
                self._state.retry_count = self.max_retries
                logger.error(
                    "Operation failed after %d attempts: %s", attempt_number, e
                )
                self.observer.on_max_retries_reached(e)
            else:
                logger.info(
                    "Operation failed on attempt %d with a non-retryable error: %s",
                    attempt_number,
                    e,
                )
            raise

        self.reset_retry()
        return result

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Attempt %d/%d failed (%s); retrying in %.2fs",
            retry_state.attempt_number,
            self.max_retries,
            error,
            delay,
        )
        self.observer.on_retry(retry_state.attempt_number, error, delay)
