"""Task store backends.

Every backend stores one record per task id and applies updates through the
same merge rules (``apply_update``), so the state machine and the progress
bookkeeping behave identically whether tasks live in Redis, on disk or in
process memory.
"""

import logging
import os
import re
import secrets
import string
import tempfile
import threading
import time
import weakref
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import orjson
import redis
from pydantic import ValidationError

from ..errors import InvalidTransition, StoreFatal, StoreUnavailable, TaskNotFound
from ..services.progress import compute_progress
from .retry import call_with_retry
from .schema import TaskKind, TaskRecord, TaskStatus, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=24)

_ID_ALPHABET = string.ascii_lowercase + string.digits
_IMMUTABLE_FIELDS = {"task_id", "kind", "created_at"}
_ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.PENDING, TaskStatus.PROCESSING, TaskStatus.FAILED},
    TaskStatus.PROCESSING: {TaskStatus.PROCESSING, TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}

Mutation = Callable[[TaskRecord], TaskRecord]


def new_task_id(kind: TaskKind) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{kind.value}_{int(time.time() * 1000)}_{suffix}"


def apply_update(rec: TaskRecord, fields: Dict[str, Any]) -> TaskRecord:
    """Return ``rec`` with ``fields`` merged in, enforcing the task state machine."""
    unknown = set(fields) - set(TaskRecord.model_fields)
    if unknown:
        raise ValueError(f"Unknown task fields: {sorted(unknown)}")
    frozen = _IMMUTABLE_FIELDS & set(fields)
    if frozen:
        raise ValueError(f"Task fields cannot be changed: {sorted(frozen)}")

    status = TaskStatus(fields.get("status", rec.status))
    if rec.status.terminal or status not in _ALLOWED_TRANSITIONS[rec.status]:
        raise InvalidTransition(rec.task_id, rec.status.value, status.value)

    data = rec.model_dump()
    data.update(fields)
    data["status"] = status

    if "progress" not in fields and {"processed_records", "total_records"} & set(fields):
        data["progress"] = compute_progress(data["processed_records"], data["total_records"])

    if status is TaskStatus.COMPLETED:
        data["progress"] = 100
    else:
        # never goes backwards, and 100 is reserved for completed tasks
        data["progress"] = min(max(int(data["progress"]), rec.progress), 99)

    data["updated_at"] = utcnow()
    return TaskRecord.model_validate(data)


def append_error(rec: TaskRecord, message: str) -> TaskRecord:
    if rec.status.terminal:
        raise InvalidTransition(rec.task_id, rec.status.value, rec.status.value)
    return rec.model_copy(update={
        "errors": [*rec.errors, message],
        "failed_records": rec.failed_records + 1,
        "updated_at": utcnow(),
    })


def is_sweepable(rec: TaskRecord, cutoff: datetime) -> bool:
    return rec.created_at < cutoff and rec.status is not TaskStatus.PROCESSING


class TaskStore(ABC):
    """Keyed storage for the tasks of one kind (export or import)."""

    def __init__(self, kind: TaskKind, retention: timedelta = DEFAULT_RETENTION):
        self.kind = TaskKind(kind)
        self.retention = retention

    def create_task(self, format: str, **metadata: Any) -> str:
        rec = TaskRecord(
            task_id=new_task_id(self.kind),
            kind=self.kind,
            format=format.lower(),
            **metadata,
        )
        self._insert(rec)
        logger.info("Created %s task %s (format=%s)", self.kind.value, rec.task_id, rec.format)
        return rec.task_id

    def update_task(self, task_id: str, **fields: Any) -> TaskRecord:
        return self._modify(task_id, lambda rec: apply_update(rec, fields))

    def add_error(self, task_id: str, message: str, **fields: Any) -> TaskRecord:
        """Record a per-record failure; ``fields`` are merged in the same write."""
        if not fields:
            return self._modify(task_id, lambda rec: append_error(rec, message))
        return self._modify(task_id, lambda rec: apply_update(append_error(rec, message), fields))

    def cleanup_expired_tasks(
        self, now: Optional[datetime] = None, retention: Optional[timedelta] = None
    ) -> List[TaskRecord]:
        cutoff = (now or utcnow()) - (retention if retention is not None else self.retention)
        swept = self._sweep(cutoff)
        if swept:
            logger.info("Swept %s expired %s tasks", len(swept), self.kind.value)
        return swept

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        """Current state of the task, or None if it is unknown or was swept."""

    @abstractmethod
    def delete_task(self, task_id: str) -> bool:
        ...

    @abstractmethod
    def _insert(self, rec: TaskRecord) -> None:
        ...

    @abstractmethod
    def _modify(self, task_id: str, mutate: Mutation) -> TaskRecord:
        """Atomically read, transform and write back one task."""

    @abstractmethod
    def _sweep(self, cutoff: datetime) -> List[TaskRecord]:
        ...

    def close(self) -> None:
        pass


class MemoryTaskStore(TaskStore):
    """Process-local store. Suitable for tests and single-process deployments."""

    def __init__(self, kind: TaskKind, retention: timedelta = DEFAULT_RETENTION):
        super().__init__(kind, retention)
        self._tasks: Dict[str, TaskRecord] = {}
        self._lock = threading.Lock()

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        with self._lock:
            rec = self._tasks.get(task_id)
            return rec.model_copy(deep=True) if rec else None

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def _insert(self, rec: TaskRecord) -> None:
        with self._lock:
            self._tasks[rec.task_id] = rec.model_copy(deep=True)

    def _modify(self, task_id: str, mutate: Mutation) -> TaskRecord:
        with self._lock:
            rec = self._tasks.get(task_id)
            if rec is None:
                raise TaskNotFound(task_id)
            updated = mutate(rec)
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    def _sweep(self, cutoff: datetime) -> List[TaskRecord]:
        with self._lock:
            expired = [rec for rec in self._tasks.values() if is_sweepable(rec, cutoff)]
            for rec in expired:
                del self._tasks[rec.task_id]
        return expired


class FileTaskStore(TaskStore):
    """One JSON document per task, replaced atomically on every write."""

    def __init__(
        self,
        kind: TaskKind,
        directory: str | os.PathLike,
        retention: timedelta = DEFAULT_RETENTION,
        attempts: int = 3,
        delay: float = 0.2,
    ):
        super().__init__(kind, retention)
        self.directory = Path(directory) / self.kind.value
        self.directory.mkdir(parents=True, exist_ok=True)
        self.attempts = attempts
        self.delay = delay
        # entries vanish once no caller holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _path(self, task_id: str) -> Path:
        safe = re.sub(r"[^a-zA-Z0-9_-]", "_", task_id)
        return self.directory / f"{safe}.json"

    def _lock_for(self, task_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(task_id, threading.Lock())

    def _call(self, fn):
        return call_with_retry(
            fn,
            attempts=self.attempts,
            delay=self.delay,
            retry_on=(OSError,),
            give_up=lambda exc: StoreUnavailable(f"Task directory unavailable: {exc}"),
        )

    def _read(self, task_id: str) -> Optional[TaskRecord]:
        path = self._path(task_id)

        def read():
            try:
                return path.read_bytes()
            except FileNotFoundError:
                return None

        raw = self._call(read)
        if raw is None:
            return None
        try:
            return TaskRecord.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as exc:
            raise StoreFatal(f"Task {task_id} is unreadable: {exc}") from exc

    def _write(self, rec: TaskRecord) -> None:
        payload = orjson.dumps(rec.model_dump(mode="json", by_alias=True), option=orjson.OPT_INDENT_2)

        def write():
            fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(payload)
                os.replace(tmp, self._path(rec.task_id))
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise

        self._call(write)

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self._read(task_id)

    def delete_task(self, task_id: str) -> bool:
        with self._lock_for(task_id):
            return self._unlink(self._path(task_id))

    def _unlink(self, path: Path) -> bool:
        def unlink():
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False

        return self._call(unlink)

    def _insert(self, rec: TaskRecord) -> None:
        with self._lock_for(rec.task_id):
            self._write(rec)

    def _modify(self, task_id: str, mutate: Mutation) -> TaskRecord:
        with self._lock_for(task_id):
            rec = self._read(task_id)
            if rec is None:
                raise TaskNotFound(task_id)
            updated = mutate(rec)
            self._write(updated)
            return updated

    def _sweep(self, cutoff: datetime) -> List[TaskRecord]:
        swept: List[TaskRecord] = []
        for path in self._call(lambda: sorted(self.directory.glob("*.json"))):
            task_id = path.stem
            with self._lock_for(task_id):
                try:
                    rec = self._read(task_id)
                except StoreFatal:
                    logger.warning("Removing corrupt task file %s", path.name)
                    self._unlink(path)
                    continue
                if rec is not None and is_sweepable(rec, cutoff):
                    self._unlink(path)
                    swept.append(rec)
        return swept


class RedisTaskStore(TaskStore):
    """Hash per task with orjson-encoded values plus a creation-time index."""

    def __init__(
        self,
        client: redis.Redis,
        kind: TaskKind,
        retention: timedelta = DEFAULT_RETENTION,
        attempts: int = 3,
        delay: float = 0.2,
    ):
        super().__init__(kind, retention)
        self.r = client
        self.attempts = attempts
        self.delay = delay
        self._index = f"tasks:{self.kind.value}:created"

    @classmethod
    def from_url(cls, url: str, kind: TaskKind, **kwargs) -> "RedisTaskStore":
        client = redis.from_url(
            url, decode_responses=True, health_check_interval=30, retry_on_timeout=True
        )
        return cls(client, kind, **kwargs)

    def _key(self, task_id: str) -> str:
        return f"task:{self.kind.value}:{task_id}"

    def _call(self, fn):
        return call_with_retry(
            fn,
            attempts=self.attempts,
            delay=self.delay,
            retry_on=(redis.ConnectionError, redis.TimeoutError),
            give_up=lambda exc: StoreUnavailable(f"Redis unavailable: {exc}"),
        )

    @staticmethod
    def _encode(rec: TaskRecord) -> Dict[str, str]:
        return {k: orjson.dumps(v).decode() for k, v in rec.model_dump(mode="json").items()}

    @staticmethod
    def _decode(task_id: str, data: Dict[str, str]) -> TaskRecord:
        try:
            return TaskRecord.model_validate({k: orjson.loads(v) for k, v in data.items()})
        except (orjson.JSONDecodeError, ValidationError) as exc:
            raise StoreFatal(f"Task {task_id} is unreadable: {exc}") from exc

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        data = self._call(lambda: self.r.hgetall(self._key(task_id)))
        if not data:
            return None
        return self._decode(task_id, data)

    def delete_task(self, task_id: str) -> bool:
        def delete():
            pipe = self.r.pipeline(transaction=True)
            pipe.delete(self._key(task_id))
            pipe.zrem(self._index, task_id)
            deleted, _ = pipe.execute()
            return bool(deleted)

        return self._call(delete)

    def _insert(self, rec: TaskRecord) -> None:
        def insert():
            pipe = self.r.pipeline(transaction=True)
            pipe.hset(self._key(rec.task_id), mapping=self._encode(rec))
            pipe.zadd(self._index, {rec.task_id: rec.created_at.timestamp()})
            pipe.execute()

        self._call(insert)

    def _modify(self, task_id: str, mutate: Mutation) -> TaskRecord:
        key = self._key(task_id)

        def txn(pipe):
            data = pipe.hgetall(key)
            if not data:
                raise TaskNotFound(task_id)
            updated = mutate(self._decode(task_id, data))
            pipe.multi()
            pipe.hset(key, mapping=self._encode(updated))
            return updated

        return self._call(lambda: self.r.transaction(txn, key, value_from_callable=True))

    def _sweep(self, cutoff: datetime) -> List[TaskRecord]:
        swept: List[TaskRecord] = []
        ids = self._call(lambda: self.r.zrangebyscore(self._index, "-inf", cutoff.timestamp()))
        for task_id in ids:
            rec = self._call(lambda: self.r.transaction(
                self._sweep_one(task_id, cutoff), self._key(task_id), value_from_callable=True
            ))
            if rec is not None:
                swept.append(rec)
        return swept

    def _sweep_one(self, task_id: str, cutoff: datetime):
        key = self._key(task_id)

        def txn(pipe):
            data = pipe.hgetall(key)
            rec = None
            if data:
                try:
                    rec = self._decode(task_id, data)
                except StoreFatal:
                    logger.warning("Removing corrupt task %s", task_id)
                if rec is not None and not is_sweepable(rec, cutoff):
                    return None
            pipe.multi()
            pipe.delete(key)
            pipe.zrem(self._index, task_id)
            return rec

        return txn

    def close(self) -> None:
        self.r.close()
