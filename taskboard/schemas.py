from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field

from .db import TaskPriority, TaskStatus
from .utils import now_iso

T = TypeVar("T")

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    message: Optional[str] = None
    statusCode: int = 200
    timestamp: str = Field(default_factory=now_iso)


class ErrorEnvelope(BaseModel):
    error: str
    statusCode: int
    timestamp: str = Field(default_factory=now_iso)
    path: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    validationErrors: Optional[list[dict[str, Any]]] = None


class Health(BaseModel):
    status: str = "OK"
    timestamp: str = Field(default_factory=now_iso)
    environment: str


# === Auth ===


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfilePatch(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class UserOut(BaseModel):
    id: str
    email: str
    name: Optional[str]
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class LoginOut(BaseModel):
    user: UserOut
    token: str


# === Boards ===


class BoardIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)


class BoardPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)


class BoardOut(BaseModel):
    id: str
    name: str
    description: Optional[str]
    color: str
    userId: str
    createdAt: datetime
    updatedAt: datetime
    columns: Optional[list[ColumnOut]] = None


# === Columns ===


class BoardColumnIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    position: Optional[int] = Field(default=None, ge=0)


class ColumnIn(BoardColumnIn):
    boardId: str = Field(min_length=1)


class ColumnPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    position: Optional[int] = Field(default=None, ge=0)


class ColumnReorder(BaseModel):
    position: int = Field(ge=0)


class ColumnOut(BaseModel):
    id: str
    boardId: str
    name: str
    position: int
    createdAt: datetime
    updatedAt: datetime
    tasks: Optional[list[TaskOut]] = None


# === Tasks ===


class TaskIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    columnId: str = Field(min_length=1)
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    dueDate: Optional[str] = None
    position: Optional[int] = Field(default=None, ge=0)


class TaskPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    columnId: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    dueDate: Optional[str] = None
    position: Optional[int] = Field(default=None, ge=0)


class TaskMove(BaseModel):
    columnId: str = Field(min_length=1)
    position: int = Field(ge=0)


class ColumnSummary(BaseModel):
    id: str
    name: str
    boardId: str


class TaskOut(BaseModel):
    id: str
    columnId: str
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    dueDate: Optional[datetime]
    position: int
    createdAt: datetime
    updatedAt: datetime
    column: Optional[ColumnSummary] = None


BoardOut.model_rebuild()
ColumnOut.model_rebuild()
