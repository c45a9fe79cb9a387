import math
from datetime import date
from typing import Iterable, List, Optional

from loguru import logger
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from app.core.config import get_settings
from app.core.database import transaction
from app.core.errors import NotFound, ValidationFailed
from app.models.todo import (
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
    PRIORITY_OPTIONS,
    PRIORITY_URGENT,
    STATUS_COMPLETED,
    STATUS_OPTIONS,
    STATUS_PENDING,
    Todo,
)
from app.models.user import User
from app.schemas.todo import (
    TodoComputed,
    TodoCreate,
    TodoPage,
    TodoRecord,
    TodoUpdate,
    TodoView,
    TodoWithUploads,
    UploadSummary,
)
from app.services.attachments import (
    IncomingFile,
    check_batch_size,
    process_uploads,
    read_attachment,
    remove_blob_then_record,
    select_attachment,
)
from app.services.attachments import delete_attachment as _delete_attachment
from app.services.storage import Storage


PRIORITY_COLORS = {
    PRIORITY_LOW: "green",
    PRIORITY_MEDIUM: "blue",
    PRIORITY_HIGH: "orange",
    PRIORITY_URGENT: "red",
}

STATUS_COLORS = {
    STATUS_PENDING: "yellow",
    STATUS_COMPLETED: "green",
}

SORTABLE_COLUMNS = {
    "id": Todo.id,
    "title": Todo.title,
    "description": Todo.description,
    "status": Todo.status,
    "priority": Todo.priority,
    "due_date": Todo.due_date,
    "created_at": Todo.created_at,
    "updated_at": Todo.updated_at,
}


def compute_fields(record: TodoRecord, today: Optional[date] = None) -> TodoComputed:
    today = today or date.today()
    due = record.due_date
    return TodoComputed(
        is_overdue=bool(due and due < today and record.status != STATUS_COMPLETED),
        is_due_today=bool(due and due == today),
        priority_color=PRIORITY_COLORS.get(record.priority, "gray"),
        status_color=STATUS_COLORS.get(record.status, "gray"),
    )


def to_view(todo: Todo, today: Optional[date] = None) -> TodoView:
    record = TodoRecord.model_validate(todo)
    return TodoView.compose(record, compute_fields(record, today))


def status_options() -> dict[str, str]:
    return dict(STATUS_OPTIONS)


def priority_options() -> dict[str, str]:
    return dict(PRIORITY_OPTIONS)


def get_owned_todo(db: Session, owner: User, todo_id: int) -> Todo:
    todo = (
        db.query(Todo)
        .options(selectinload(Todo.attachments))
        .filter(Todo.id == todo_id, Todo.user_id == owner.id)
        .first()
    )
    if not todo:
        raise NotFound("Todo not found.")
    return todo


def list_todos(
    db: Session,
    owner: User,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    due_date: Optional[date] = None,
    overdue: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    per_page: Optional[int] = None,
) -> TodoPage:
    settings = get_settings()
    today = date.today()

    column = SORTABLE_COLUMNS.get(sort_by)
    if column is None:
        raise ValidationFailed(f"Cannot sort by {sort_by!r}.")
    if sort_order.lower() not in ("asc", "desc"):
        raise ValidationFailed("sort_order must be 'asc' or 'desc'.")

    per_page = per_page or settings.TODOS_PER_PAGE
    per_page = max(1, min(per_page, settings.TODOS_MAX_PER_PAGE))
    page = max(1, page)

    query = db.query(Todo).filter(Todo.user_id == owner.id)
    if status:
        query = query.filter(Todo.status == status)
    if priority:
        query = query.filter(Todo.priority == priority)
    if due_date:
        query = query.filter(Todo.due_date == due_date)
    if overdue:
        query = query.filter(
            Todo.due_date != None,  # noqa: E711
            Todo.due_date < today,
            Todo.status != STATUS_COMPLETED,
        )
    if search:
        # Literal substring match: % and _ in the search text are not wildcards
        query = query.filter(
            or_(
                Todo.title.contains(search, autoescape=True),
                Todo.description.contains(search, autoescape=True),
            )
        )

    total = query.count()
    ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
    todos = (
        query.options(selectinload(Todo.attachments))
        .order_by(ordering, Todo.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return TodoPage(
        data=[to_view(todo, today) for todo in todos],
        current_page=page,
        per_page=per_page,
        total=total,
        last_page=max(1, math.ceil(total / per_page)),
    )


def get_todo(db: Session, owner: User, todo_id: int) -> TodoView:
    return to_view(get_owned_todo(db, owner, todo_id))


def create_todo(
    db: Session,
    storage: Storage,
    owner: User,
    fields: TodoCreate,
    files: Iterable[IncomingFile] = (),
) -> TodoWithUploads:
    files = list(files)
    check_batch_size(files)

    with transaction(db):
        todo = Todo(user_id=owner.id, **fields.model_dump())
        db.add(todo)
    logger.info(f"Todo created todo_id={todo.id} user_id={owner.id} files={len(files)}")

    summary = process_uploads(db, storage, todo, files) if files else UploadSummary()
    db.refresh(todo)
    return TodoWithUploads(**to_view(todo).model_dump(), upload_summary=summary)


def update_todo(
    db: Session,
    storage: Storage,
    owner: User,
    todo_id: int,
    fields: TodoUpdate,
    files: Iterable[IncomingFile] = (),
) -> TodoWithUploads:
    todo = get_owned_todo(db, owner, todo_id)
    files = list(files)
    check_batch_size(files)

    changes = fields.model_dump(include=fields.model_fields_set)
    if "title" in changes and not changes["title"]:
        raise ValidationFailed("The title field is required.")
    for column in ("status", "priority"):
        if column in changes and changes[column] is None:
            raise ValidationFailed(f"The {column} field cannot be null.")

    with transaction(db):
        for name, value in changes.items():
            setattr(todo, name, value)
    logger.info(f"Todo updated todo_id={todo.id} fields={sorted(changes)} files={len(files)}")

    summary = process_uploads(db, storage, todo, files) if files else UploadSummary()
    db.refresh(todo)
    return TodoWithUploads(**to_view(todo).model_dump(), upload_summary=summary)


def _delete_with_attachments(db: Session, storage: Storage, todo: Todo) -> None:
    # Blob, then attachment row, then the parent row
    for attachment in list(todo.attachments):
        remove_blob_then_record(db, storage, attachment)
    db.delete(todo)
    db.flush()


def delete_todo(db: Session, storage: Storage, owner: User, todo_id: int) -> None:
    todo = get_owned_todo(db, owner, todo_id)
    with transaction(db):
        _delete_with_attachments(db, storage, todo)
    logger.info(f"Todo deleted todo_id={todo_id} user_id={owner.id}")


def bulk_delete_todos(db: Session, storage: Storage, owner: User, ids: List[int]) -> int:
    todos = (
        db.query(Todo)
        .options(selectinload(Todo.attachments))
        .filter(Todo.user_id == owner.id, Todo.id.in_(set(ids)))
        .all()
    )
    with transaction(db):
        for todo in todos:
            _delete_with_attachments(db, storage, todo)
    logger.info(f"Bulk delete user_id={owner.id} requested={len(ids)} deleted={len(todos)}")
    return len(todos)


def download_attachment(
    db: Session,
    storage: Storage,
    owner: User,
    todo_id: int,
    attachment_id: Optional[int] = None,
) -> tuple[bytes, str]:
    todo = get_owned_todo(db, owner, todo_id)
    attachment = select_attachment(todo, attachment_id)
    data = read_attachment(storage, attachment)
    return data, attachment.original_name or "todo-attachment.pdf"


def delete_attachment(
    db: Session,
    storage: Storage,
    owner: User,
    todo_id: int,
    attachment_id: Optional[int],
) -> None:
    todo = get_owned_todo(db, owner, todo_id)
    _delete_attachment(db, storage, todo, attachment_id)
