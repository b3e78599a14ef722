"""
Bounded retry policy with exponential backoff.
Wraps any async operation; only errors accepted by the retryable predicate are retried.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from utils.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)


def _always_retry(error: BaseException) -> bool:
    return True


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0  # Seconds before the second attempt
    backoff_factor: float = 2.0
    max_delay: float = 8.0
    retryable: Callable[[BaseException], bool] = _always_retry
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    name: str = "operation"

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"⚠️ [RETRY] {self.name} attempt {retry_state.attempt_number}/{self.max_attempts} failed: {error}. "
            f"Retrying in {delay:.2f}s"
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=self.backoff_factor, max=self.max_delay),
            retry=retry_if_exception(self.retryable),
            sleep=self.sleep,
            before_sleep=self._log_retry,
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Run ``func`` until it succeeds or the policy gives up.

        Raises:
            The original exception when it is not retryable.
            RetryExhaustedError: when every attempt failed with a retryable error.
        """
        try:
            async for attempt in self.retrying():
                with attempt:
                    result = await func(*args, **kwargs)
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1 and not attempt.retry_state.outcome.failed:
                    logger.info(f"✅ [RETRY] {self.name} succeeded on attempt {attempt_number}/{self.max_attempts}")
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"❌ [RETRY] {self.name} exhausted {self.max_attempts} attempts: {last_error}")
            raise RetryExhaustedError(
                f"{self.name} failed after {self.max_attempts} attempts: {last_error}",
                attempts=e.last_attempt.attempt_number,
                last_error=last_error,
            ) from last_error
        except Exception as e:
            if not self.retryable(e):
                logger.warning(f"❌ [RETRY] {self.name} failed with non-retryable error: {e}")
            raise
        return result
