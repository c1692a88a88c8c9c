from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TaskKind(str, Enum):
    EXPORT = "export"
    IMPORT = "import"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    format: str
    total_records: int = Field(default=0, ge=0)
    processed_records: int = Field(default=0, ge=0)
    success_records: int = Field(default=0, ge=0)  # import only
    failed_records: int = Field(default=0, ge=0)  # import only
    errors: List[str] = Field(default_factory=list)  # import only
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    source_name: Optional[str] = None  # import only: uploaded file's original name
    search_name: Optional[str] = None  # export only
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
