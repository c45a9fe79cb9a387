from datetime import date
from typing import Annotated, Any, List, Optional, Type, TypeVar
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.database import get_db
from app.models.user import User
from app.schemas.todo import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    TodoCreate,
    TodoPage,
    TodoPriority,
    TodoStatus,
    TodoUpdate,
    TodoView,
    TodoWithUploads,
)
from app.schemas.user import MessageResponse
from app.services import todos as todo_service
from app.services.storage import Storage, get_storage


router = APIRouter(prefix="/todos", tags=["todos"])

ModelT = TypeVar("ModelT", bound=BaseModel)

UPDATABLE_FIELDS = ("title", "description", "status", "priority", "due_date")
CLEARABLE_FIELDS = ("description", "due_date")


def _validate_form(model: Type[ModelT], data: dict[str, Any]) -> ModelT:
    # Form fields are validated after collection, so surface errors as a normal 422
    try:
        return model(**data)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


async def get_submitted_fields(request: Request) -> dict[str, str]:
    # Typed Form() params turn an empty value into None, so presence is read from the raw form
    form = await request.form()
    return {
        name: form[name]
        for name in UPDATABLE_FIELDS
        if name in form and isinstance(form[name], str)
    }


def _collect_files(*groups: Optional[List[UploadFile]]) -> List[UploadFile]:
    files: List[UploadFile] = []
    for group in groups:
        if group:
            files.extend(group)
    return files


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@router.get("/status-options", response_model=dict[str, str])
def get_status_options(
    current_user: Annotated[User, Depends(get_current_user)],
) -> dict[str, str]:
    return todo_service.status_options()


@router.get("/priority-options", response_model=dict[str, str])
def get_priority_options(
    current_user: Annotated[User, Depends(get_current_user)],
) -> dict[str, str]:
    return todo_service.priority_options()


@router.delete("/bulk-delete", response_model=BulkDeleteResponse)
def bulk_delete(
    payload: BulkDeleteRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[Storage, Depends(get_storage)],
) -> BulkDeleteResponse:
    """
    Delete several to-dos at once. Ids that do not belong to the caller are ignored.
    """
    deleted = todo_service.bulk_delete_todos(db, storage, current_user, payload.ids)
    return BulkDeleteResponse(message=f"{deleted} todos deleted successfully.", deleted=deleted)


@router.get("", response_model=TodoPage)
def list_todos(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    status_filter: Annotated[Optional[TodoStatus], Query(alias="status")] = None,
    priority: Optional[TodoPriority] = None,
    due_date: Optional[date] = None,
    overdue: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[Optional[int], Query(ge=1)] = None,
) -> TodoPage:
    """
    Paginated list of the caller's to-dos (newest first by default).
    """
    return todo_service.list_todos(
        db,
        current_user,
        status=status_filter,
        priority=priority,
        due_date=due_date,
        overdue=overdue,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=TodoWithUploads, status_code=status.HTTP_201_CREATED)
def create_todo(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[Storage, Depends(get_storage)],
    title: Annotated[str, Form()],
    description: Annotated[Optional[str], Form()] = None,
    status_value: Annotated[Optional[str], Form(alias="status")] = None,
    priority: Annotated[Optional[str], Form()] = None,
    due_date: Annotated[Optional[str], Form()] = None,
    pdfs: Annotated[Optional[List[UploadFile]], File()] = None,
    pdfs_array: Annotated[Optional[List[UploadFile]], File(alias="pdfs[]")] = None,
    pdf: Annotated[Optional[UploadFile], File()] = None,
) -> TodoWithUploads:
    """
    Create a to-do from multipart form data with optional PDF attachments.

    Attachments are processed one by one; invalid files are skipped and
    reported in ``upload_summary`` without failing the request.
    """
    data: dict[str, Any] = {"title": title, "description": description or None}
    if status_value:
        data["status"] = status_value
    if priority:
        data["priority"] = priority
    if due_date:
        data["due_date"] = due_date
    fields = _validate_form(TodoCreate, data)

    files = _collect_files(pdfs, pdfs_array, [pdf] if pdf else None)
    return todo_service.create_todo(db, storage, current_user, fields, files)


@router.get("/{todo_id}", response_model=TodoView)
def get_todo(
    todo_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> TodoView:
    return todo_service.get_todo(db, current_user, todo_id)


@router.api_route("/{todo_id}", methods=["PUT", "PATCH"], response_model=TodoWithUploads)
def update_todo(
    todo_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[Storage, Depends(get_storage)],
    submitted: Annotated[dict[str, str], Depends(get_submitted_fields)],
    pdfs: Annotated[Optional[List[UploadFile]], File()] = None,
    pdfs_array: Annotated[Optional[List[UploadFile]], File(alias="pdfs[]")] = None,
    pdf: Annotated[Optional[UploadFile], File()] = None,
) -> TodoWithUploads:
    """
    Partial update: only the form fields that are sent
    (``title``, ``description``, ``status``, ``priority``, ``due_date``) are changed.
    New PDF files are appended to the existing attachments.

    An empty ``description`` or ``due_date`` clears the value; an empty
    ``title`` is rejected.
    """
    data: dict[str, Any] = dict(submitted)
    for name in CLEARABLE_FIELDS:
        if name in data and data[name] == "":
            data[name] = None
    fields = _validate_form(TodoUpdate, data)

    files = _collect_files(pdfs, pdfs_array, [pdf] if pdf else None)
    return todo_service.update_todo(db, storage, current_user, todo_id, fields, files)


@router.delete("/{todo_id}", response_model=MessageResponse)
def delete_todo(
    todo_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[Storage, Depends(get_storage)],
) -> MessageResponse:
    todo_service.delete_todo(db, storage, current_user, todo_id)
    return MessageResponse(message="Todo deleted successfully.")


@router.get("/{todo_id}/download-pdf")
def download_pdf(
    todo_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[Storage, Depends(get_storage)],
    pdf_id: Optional[int] = None,
) -> Response:
    """
    Download an attachment as a file. Without ``pdf_id`` the first attachment is returned.
    """
    data, filename = todo_service.download_attachment(db, storage, current_user, todo_id, pdf_id)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": _content_disposition(filename)},
    )


@router.delete("/{todo_id}/delete-pdf", response_model=MessageResponse)
def delete_pdf(
    todo_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[Storage, Depends(get_storage)],
    pdf_id: Optional[int] = None,
) -> MessageResponse:
    todo_service.delete_attachment(db, storage, current_user, todo_id, pdf_id)
    return MessageResponse(message="PDF deleted successfully.")
