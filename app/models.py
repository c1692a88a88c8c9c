from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import List, Optional

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class ExportRequest(CamelModel):
    format: Optional[str] = "json"  # json | excel | xlsx | csv
    name: Optional[str] = None

class TaskCreatedResponse(CamelModel):
    task_id: str
    status: str  # always "pending" at creation
    message: str

class ImportTaskCreatedResponse(TaskCreatedResponse):
    format: str
    record_count: int

class TaskStatusResponse(CamelModel):
    task_id: str
    status: str  # pending | processing | completed | failed
    progress: int
    format: str
    total_records: int
    processed_records: int
    success_records: Optional[int] = None
    failed_records: Optional[int] = None
    errors: Optional[List[str]] = None
    file_name: Optional[str] = None
    source_name: Optional[str] = None
    search_name: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, rec) -> "TaskStatusResponse":
        return cls.model_validate(rec.model_dump(mode="json", exclude={"file_path", "kind"}))

class UserCreate(BaseModel):
    name: Optional[str] = None

class UserOut(CamelModel):
    id: int
    name: str
    created_at: datetime
    updated_at: datetime

class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

class UserPage(CamelModel):
    data: List[UserOut]
    pagination: Pagination

class DeletedUserResponse(CamelModel):
    message: str
    deleted_user: UserOut

class InfoViewOut(CamelModel):
    id: int
    title: str
    content: Optional[str] = None
    created_at: datetime
