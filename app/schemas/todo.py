from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

from app.models.todo import PRIORITY_MEDIUM, STATUS_PENDING


TodoStatus = Literal["pending", "completed"]
TodoPriority = Literal["low", "medium", "high", "urgent"]


class TodoCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    status: TodoStatus = STATUS_PENDING
    priority: TodoPriority = PRIORITY_MEDIUM
    due_date: Optional[date] = None


class TodoUpdate(BaseModel):
    """Partial update: only fields present in ``model_fields_set`` are applied."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[TodoStatus] = None
    priority: Optional[TodoPriority] = None
    due_date: Optional[date] = None


class BulkDeleteRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class BulkDeleteResponse(BaseModel):
    message: str
    deleted: int


def format_file_size(size: Optional[int]) -> str:
    if not size:
        return "Unknown"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {units[unit]}"


class AttachmentRecord(BaseModel):
    id: int
    todo_id: int
    original_name: str
    file_size: Optional[int]
    mime_type: str
    created_at: datetime

    class Config:
        from_attributes = True

    @computed_field
    @property
    def formatted_file_size(self) -> str:
        return format_file_size(self.file_size)


class TodoRecord(BaseModel):
    """Persisted projection of a to-do row."""

    id: int
    user_id: int
    title: str
    description: Optional[str]
    status: str
    priority: str
    due_date: Optional[date]
    created_at: datetime
    updated_at: datetime
    attachments: List[AttachmentRecord] = []

    class Config:
        from_attributes = True


class TodoComputed(BaseModel):
    """Read-time fields derived from a to-do, never stored."""

    is_overdue: bool
    is_due_today: bool
    priority_color: str
    status_color: str


class TodoView(TodoRecord, TodoComputed):
    @classmethod
    def compose(cls, record: TodoRecord, computed: TodoComputed) -> "TodoView":
        return cls(**record.model_dump(exclude={"attachments"}), attachments=record.attachments, **computed.model_dump())


class UploadFailure(BaseModel):
    filename: Optional[str]
    reason: str


class UploadSummary(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    errors: List[UploadFailure] = []


class TodoWithUploads(TodoView):
    upload_summary: UploadSummary


class TodoPage(BaseModel):
    data: List[TodoView]
    current_page: int
    per_page: int
    total: int
    last_page: int
