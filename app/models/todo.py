from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.database import Base


STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"

PRIORITY_LOW = "low"
PRIORITY_MEDIUM = "medium"
PRIORITY_HIGH = "high"
PRIORITY_URGENT = "urgent"

STATUS_OPTIONS: dict[str, str] = {
    STATUS_PENDING: "Pending",
    STATUS_COMPLETED: "Completed",
}

PRIORITY_OPTIONS: dict[str, str] = {
    PRIORITY_LOW: "Low",
    PRIORITY_MEDIUM: "Medium",
    PRIORITY_HIGH: "High",
    PRIORITY_URGENT: "Urgent",
}


class Todo(Base):
    __tablename__ = "todos"
    __table_args__ = (
        Index("ix_todos_user_id_status", "user_id", "status"),
        Index("ix_todos_user_id_created_at", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), default=STATUS_PENDING, nullable=False)
    priority = Column(String(32), default=PRIORITY_MEDIUM, nullable=False)
    due_date = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="todos")
    # No ORM cascade: attachment rows are removed explicitly after their blobs
    attachments = relationship(
        "TodoAttachment",
        back_populates="todo",
        order_by="TodoAttachment.id",
        passive_deletes="all",
    )


class TodoAttachment(Base):
    __tablename__ = "todo_attachments"

    id = Column(Integer, primary_key=True, index=True)
    todo_id = Column(Integer, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False, index=True)
    pdf_path = Column(String(512), nullable=False)
    original_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(100), default="application/pdf", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    todo = relationship("Todo", back_populates="attachments")
