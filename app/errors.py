"""Error taxonomy shared by the stores, the producers and the HTTP layer."""

from typing import Iterable


class StoreError(Exception):
    """Base class for task store failures."""


class StoreUnavailable(StoreError):
    """The backing store could not be reached, even after retrying."""


class TaskNotFound(StoreError):
    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} does not exist")
        self.task_id = task_id


class StoreFatal(StoreError):
    """The backing store answered, but with something it should never hold."""


class InvalidTransition(StoreError):
    def __init__(self, task_id: str, current: str, requested: str):
        super().__init__(f"Task {task_id} cannot move from {current} to {requested}")
        self.task_id = task_id
        self.current = current
        self.requested = requested


class RecordStoreError(Exception):
    pass


class RecordStoreUnavailable(RecordStoreError):
    pass


class RecordNotFound(RecordStoreError):
    pass


class UnsupportedFormat(ValueError):
    def __init__(self, value: str | None, valid: Iterable[str]):
        self.value = value
        self.valid = list(valid)
        super().__init__(f"Unsupported format: {value}")


class ParseError(ValueError):
    """An import file could not be turned into candidate records."""
