"""
PDF attachment processing for to-dos.

Incoming files are handled one at a time. Each one yields an
``AttachmentOutcome`` and no exception escapes the per-file loop, so one bad
file never aborts the parent to-do or its siblings.

Deletion is ordered blob first, then record. The blob store has no rollback,
so a failure between the two steps leaves a record pointing at a missing blob,
which downloads report as not found.
"""

import re
import uuid
from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Optional, Protocol

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import transaction
from app.core.errors import BadRequest, NotFound, ServiceError, ValidationFailed
from app.models.todo import Todo, TodoAttachment
from app.schemas.todo import UploadFailure, UploadSummary
from app.services.storage import Storage


class IncomingFile(Protocol):
    """The parts of ``fastapi.UploadFile`` the processor relies on."""

    filename: Optional[str]
    content_type: Optional[str]
    file: BinaryIO


@dataclass
class AttachmentOutcome:
    filename: Optional[str]
    attachment: Optional[TodoAttachment] = None
    reason: Optional[str] = None

    @property
    def stored(self) -> bool:
        return self.attachment is not None


# Key component is "<32 hex>_<name>"; keep it well under the 255-byte filename limit
MAX_KEY_NAME_LENGTH = 200
# Matches TodoAttachment.original_name
MAX_ORIGINAL_NAME_LENGTH = 255


def normalize_filename(filename: str) -> str:
    """
    Normalize filename: replace spaces with underscores, remove special characters.
    Keeps only: letters, numbers, dots, dashes, underscores.
    Long names are cut to ``MAX_KEY_NAME_LENGTH``, keeping a short extension.
    """
    # Drop any client-side directory components first
    filename = re.split(r"[\\/]", filename)[-1]
    normalized = filename.replace(" ", "_")
    normalized = re.sub(r"[^a-zA-Z0-9._-]", "", normalized)
    normalized = normalized.lstrip(".")
    if len(normalized) > MAX_KEY_NAME_LENGTH:
        stem, dot, ext = normalized.rpartition(".")
        suffix = f".{ext}" if dot and stem and len(ext) <= 10 else ""
        normalized = normalized[: MAX_KEY_NAME_LENGTH - len(suffix)].rstrip(".") + suffix
    return normalized or "document.pdf"


def build_storage_key(original_name: str) -> str:
    settings = get_settings()
    return f"{settings.PDF_STORAGE_PREFIX}/{uuid.uuid4().hex}_{normalize_filename(original_name)}"


def check_batch_size(files: List[IncomingFile]) -> None:
    max_files = get_settings().PDF_MAX_FILES
    if len(files) > max_files:
        raise ValidationFailed(f"A maximum of {max_files} PDF files can be uploaded at once.")


def _read_validated(upload: IncomingFile) -> tuple[Optional[bytes], Optional[str]]:
    """Return (data, None) for an acceptable file or (None, reason)."""
    settings = get_settings()

    if not upload.filename:
        return None, "File upload failed: missing filename."

    if upload.content_type != settings.PDF_MIME_TYPE:
        return None, f"Invalid file type {upload.content_type!r}; only PDF files are allowed."

    try:
        upload.file.seek(0)
        # One byte past the limit is enough to detect an oversized file
        data = upload.file.read(settings.PDF_MAX_BYTES + 1)
    except (OSError, ValueError) as e:
        return None, f"File upload failed: {e}"

    if not data:
        return None, "File upload failed: empty file."
    if len(data) > settings.PDF_MAX_BYTES:
        return None, f"File exceeds the maximum size of {settings.PDF_MAX_BYTES // (1024 * 1024)} MB."

    return data, None


def store_attachment(db: Session, storage: Storage, todo: Todo, upload: IncomingFile) -> AttachmentOutcome:
    settings = get_settings()
    data, reason = _read_validated(upload)
    if reason:
        logger.warning(f"Skipping attachment todo_id={todo.id} filename={upload.filename!r}: {reason}")
        return AttachmentOutcome(filename=upload.filename, reason=reason)

    key = build_storage_key(upload.filename)
    try:
        storage.put(key, data, settings.PDF_MIME_TYPE)
    except ServiceError as e:
        logger.error(f"Storing attachment failed todo_id={todo.id} key={key}: {e.detail}")
        return AttachmentOutcome(filename=upload.filename, reason="Failed to store file.")

    attachment = TodoAttachment(
        todo_id=todo.id,
        pdf_path=key,
        original_name=upload.filename[:MAX_ORIGINAL_NAME_LENGTH],
        file_size=len(data),
        mime_type=settings.PDF_MIME_TYPE,
    )
    try:
        with transaction(db):
            db.add(attachment)
    except SQLAlchemyError:
        logger.exception(f"Recording attachment failed todo_id={todo.id} key={key}")
        try:
            storage.delete(key)
        except ServiceError:
            logger.error(f"Orphaned blob left behind key={key}")
        return AttachmentOutcome(filename=upload.filename, reason="Failed to save file record.")

    logger.info(f"Attachment stored todo_id={todo.id} attachment_id={attachment.id} size={len(data)}")
    return AttachmentOutcome(filename=upload.filename, attachment=attachment)


def process_uploads(db: Session, storage: Storage, todo: Todo, files: Iterable[IncomingFile]) -> UploadSummary:
    summary = UploadSummary()
    for upload in files:
        try:
            outcome = store_attachment(db, storage, todo, upload)
        except Exception:
            logger.exception(f"Unexpected error storing attachment todo_id={todo.id} filename={upload.filename!r}")
            db.rollback()
            outcome = AttachmentOutcome(filename=upload.filename, reason="Unexpected error while processing file.")
        summary.total += 1
        if outcome.stored:
            summary.success += 1
        else:
            summary.failed += 1
            summary.errors.append(UploadFailure(filename=outcome.filename, reason=outcome.reason))
    logger.info(
        f"Upload summary todo_id={todo.id} total={summary.total} "
        f"success={summary.success} failed={summary.failed}"
    )
    return summary


def remove_blob_then_record(db: Session, storage: Storage, attachment: TodoAttachment) -> None:
    """
    Delete one attachment inside the caller's transaction.

    A blob that is already gone is tolerated; a storage failure raises
    ``StorageError`` before the record is touched.
    """
    removed = storage.delete(attachment.pdf_path)
    if not removed:
        logger.warning(f"Blob already absent attachment_id={attachment.id} key={attachment.pdf_path}")
    db.delete(attachment)
    db.flush()


def select_attachment(todo: Todo, attachment_id: Optional[int]) -> TodoAttachment:
    if attachment_id is None:
        if not todo.attachments:
            raise NotFound("PDF not found.")
        return todo.attachments[0]
    for attachment in todo.attachments:
        if attachment.id == attachment_id:
            return attachment
    raise NotFound("PDF not found.")


def read_attachment(storage: Storage, attachment: TodoAttachment) -> bytes:
    try:
        return storage.read(attachment.pdf_path)
    except NotFound:
        logger.warning(f"Blob missing for attachment_id={attachment.id} key={attachment.pdf_path}")
        raise NotFound("PDF not found.")


def delete_attachment(db: Session, storage: Storage, todo: Todo, attachment_id: Optional[int]) -> None:
    if attachment_id is None:
        raise BadRequest("PDF id is required.")
    attachment = select_attachment(todo, attachment_id)
    with transaction(db):
        remove_blob_then_record(db, storage, attachment)
    logger.info(f"Attachment deleted todo_id={todo.id} attachment_id={attachment_id}")
