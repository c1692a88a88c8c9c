import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor

from app.errors import StoreError
from app.storage.repo import TaskStore
from app.storage.schema import TaskStatus

logger = logging.getLogger(__name__)


class Dispatcher:
    """Runs producers in the background; callers never wait for them to finish.

    There is no cancellation: once submitted, a job runs until it reaches a
    terminal state on its own.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job")

    def submit(self, fn, *args, **kwargs) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(self._log_crash)
        return future

    @staticmethod
    def _log_crash(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background job crashed", exc_info=exc)

    def wait_started(self, store: TaskStore, task_id: str, timeout: float, interval: float = 0.05) -> bool:
        """Poll until the task has left Pending, for at most ``timeout`` seconds."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                rec = store.get_task(task_id)
            except StoreError:
                logger.warning("Could not confirm start of task %s", task_id, exc_info=True)
                return False
            if rec is None:
                return False
            if rec.status is not TaskStatus.PENDING:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(interval)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
