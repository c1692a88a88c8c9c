import logging
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    *,
    attempts: int,
    delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    give_up: Callable[[BaseException], Exception],
) -> T:
    """Run ``fn``, retrying ``retry_on`` errors with a linearly growing pause.

    When the last attempt fails the error is converted with ``give_up`` and
    raised from the original exception.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt == attempts:
                raise give_up(exc) from exc
            logger.warning(
                "Transient backend error (attempt %s/%s): %s", attempt, attempts, exc
            )
            time.sleep(delay * attempt)
    raise AssertionError("unreachable")
