from typing import Optional

from fastapi import APIRouter, Depends, Query

from . import auth
from .auth import get_current_user
from .config import Settings
from .db import Board, ColumnModel, Task, TaskPriority, TaskStatus, User
from .deps import get_settings, get_storage
from .schemas import (
    ApiResponse,
    BoardColumnIn,
    BoardIn,
    BoardOut,
    BoardPatch,
    ColumnIn,
    ColumnOut,
    ColumnPatch,
    ColumnReorder,
    ColumnSummary,
    LoginIn,
    LoginOut,
    ProfilePatch,
    TaskIn,
    TaskMove,
    TaskOut,
    TaskPatch,
    UserOut,
)
from .services import BoardService, ColumnService, TaskService
from .storage import Storage

# request field name -> model attribute
TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "columnId": "column_id",
    "priority": "priority",
    "status": "status",
    "dueDate": "due_date",
    "position": "position",
}

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
router = APIRouter(prefix="/api", dependencies=[Depends(get_current_user)])


# === Helpers ===


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        name=user.name,
        createdAt=user.created_at,
        updatedAt=user.updated_at,
    )


def task_out(task: Task, with_column: bool = False) -> TaskOut:
    column = None
    if with_column:
        column = ColumnSummary(id=task.column.id, name=task.column.name, boardId=task.column.board_id)
    return TaskOut(
        id=task.id,
        columnId=task.column_id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        dueDate=task.due_date,
        position=task.position,
        createdAt=task.created_at,
        updatedAt=task.updated_at,
        column=column,
    )


def column_out(column: ColumnModel, with_tasks: bool = True) -> ColumnOut:
    tasks = None
    if with_tasks:
        tasks = [task_out(t) for t in sorted(column.tasks, key=lambda t: (t.position, t.id))]
    return ColumnOut(
        id=column.id,
        boardId=column.board_id,
        name=column.name,
        position=column.position,
        createdAt=column.created_at,
        updatedAt=column.updated_at,
        tasks=tasks,
    )


def board_out(board: Board, with_columns: bool = True, with_tasks: bool = True) -> BoardOut:
    columns = None
    if with_columns:
        ordered = sorted(board.columns, key=lambda c: (c.position, c.id))
        columns = [column_out(c, with_tasks) for c in ordered]
    return BoardOut(
        id=board.id,
        name=board.name,
        description=board.description,
        color=board.color,
        userId=board.user_id,
        createdAt=board.created_at,
        updatedAt=board.updated_at,
        columns=columns,
    )


def task_changes(payload: TaskPatch) -> dict:
    changes = {}
    for name, value in payload.model_dump(exclude_unset=True).items():
        if value is None and name not in ("description", "dueDate"):
            continue
        changes[TASK_FIELDS[name]] = value
    return changes


# === Auth endpoints ===


@auth_router.post("/login", response_model=ApiResponse[LoginOut])
def login(
    payload: LoginIn,
    settings: Settings = Depends(get_settings),
    storage: Storage = Depends(get_storage),
):
    user, token = auth.login(storage, settings, payload.email, payload.password)
    return ApiResponse(data=LoginOut(user=user_out(user), token=token), message="Login successful")


@auth_router.get("/me", response_model=ApiResponse[UserOut])
def me(user: User = Depends(get_current_user)):
    return ApiResponse(data=user_out(user), message="User profile retrieved successfully")


@auth_router.put("/profile", response_model=ApiResponse[UserOut])
def update_profile(
    payload: ProfilePatch,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    user = auth.update_profile(storage, user, payload.name)
    return ApiResponse(data=user_out(user), message="Profile updated successfully")


@auth_router.post("/logout", response_model=ApiResponse[dict])
def logout(user: User = Depends(get_current_user)):
    # tokens are stateless; the client drops its copy
    return ApiResponse(data={"message": "Logged out successfully"}, message="Logout successful")


# === Board endpoints ===


@router.get("/boards", response_model=ApiResponse[list[BoardOut]])
def list_boards(
    include_columns: bool = Query(False, alias="includeColumns"),
    include_tasks: bool = Query(False, alias="includeTasks"),
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    boards = BoardService(storage).list(user, include_columns, include_tasks)
    return ApiResponse(
        data=[board_out(b, include_columns, include_tasks) for b in boards],
        message=f"Retrieved {len(boards)} boards successfully",
    )


@router.get("/boards/{board_id}", response_model=ApiResponse[BoardOut])
def get_board(
    board_id: str,
    include_columns: bool = Query(True, alias="includeColumns"),
    include_tasks: bool = Query(True, alias="includeTasks"),
    storage: Storage = Depends(get_storage),
):
    board = BoardService(storage).get(board_id)
    return ApiResponse(
        data=board_out(board, include_columns, include_tasks),
        message="Board retrieved successfully",
    )


@router.post("/boards", response_model=ApiResponse[BoardOut], status_code=201)
def create_board(
    payload: BoardIn,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    board = BoardService(storage).create(user, payload.name, payload.description, payload.color)
    return ApiResponse(data=board_out(board), statusCode=201, message="Board created successfully")


@router.put("/boards/{board_id}", response_model=ApiResponse[BoardOut])
def update_board(board_id: str, payload: BoardPatch, storage: Storage = Depends(get_storage)):
    board = BoardService(storage).update(board_id, payload.model_dump(exclude_unset=True))
    return ApiResponse(data=board_out(board), message="Board updated successfully")


@router.delete("/boards/{board_id}", response_model=ApiResponse)
def delete_board(board_id: str, storage: Storage = Depends(get_storage)):
    BoardService(storage).delete(board_id)
    return ApiResponse(message="Board deleted successfully")


@router.post("/boards/{board_id}/columns", response_model=ApiResponse[ColumnOut], status_code=201)
def create_board_column(board_id: str, payload: BoardColumnIn, storage: Storage = Depends(get_storage)):
    column = ColumnService(storage).create(board_id, payload.name, payload.position)
    return ApiResponse(data=column_out(column), statusCode=201, message="Column created successfully")


@router.put("/boards/{board_id}/columns/{column_id}", response_model=ApiResponse[ColumnOut])
def update_board_column(
    board_id: str,
    column_id: str,
    payload: ColumnPatch,
    storage: Storage = Depends(get_storage),
):
    column = ColumnService(storage).update(column_id, payload.name, payload.position, board_id=board_id)
    return ApiResponse(data=column_out(column), message="Column updated successfully")


@router.delete("/boards/{board_id}/columns/{column_id}", response_model=ApiResponse)
def delete_board_column(board_id: str, column_id: str, storage: Storage = Depends(get_storage)):
    ColumnService(storage).delete(column_id, board_id=board_id)
    return ApiResponse(message="Column deleted successfully")


# === Column endpoints ===


@router.post("/columns", response_model=ApiResponse[ColumnOut], status_code=201)
def create_column(payload: ColumnIn, storage: Storage = Depends(get_storage)):
    column = ColumnService(storage).create(payload.boardId, payload.name, payload.position)
    return ApiResponse(data=column_out(column), statusCode=201, message="Column created successfully")


@router.put("/columns/{column_id}", response_model=ApiResponse[ColumnOut])
def update_column(column_id: str, payload: ColumnPatch, storage: Storage = Depends(get_storage)):
    column = ColumnService(storage).update(column_id, payload.name, payload.position)
    return ApiResponse(data=column_out(column), message="Column updated successfully")


@router.delete("/columns/{column_id}", response_model=ApiResponse)
def delete_column(column_id: str, storage: Storage = Depends(get_storage)):
    ColumnService(storage).delete(column_id)
    return ApiResponse(message="Column deleted successfully")


@router.patch("/columns/{column_id}/reorder", response_model=ApiResponse[ColumnOut])
def reorder_column(column_id: str, payload: ColumnReorder, storage: Storage = Depends(get_storage)):
    column = ColumnService(storage).reorder(column_id, payload.position)
    return ApiResponse(data=column_out(column), message="Column reordered successfully")


# === Task endpoints ===


@router.get("/tasks", response_model=ApiResponse[list[TaskOut]])
def list_tasks(
    column_id: Optional[str] = Query(None, alias="columnId"),
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    sort_by: str = Query("position", alias="sortBy", pattern="^(createdAt|updatedAt|dueDate|priority|position)$"),
    sort_order: str = Query("asc", alias="sortOrder", pattern="^(asc|desc)$"),
    limit: Optional[int] = Query(None, ge=0),
    offset: Optional[int] = Query(None, ge=0),
    storage: Storage = Depends(get_storage),
):
    tasks = TaskService(storage).list(
        column_id=column_id,
        status=status,
        priority=priority,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    return ApiResponse(
        data=[task_out(t, with_column=True) for t in tasks],
        message=f"Retrieved {len(tasks)} tasks successfully",
    )


@router.get("/tasks/{task_id}", response_model=ApiResponse[TaskOut])
def get_task(task_id: str, storage: Storage = Depends(get_storage)):
    task = TaskService(storage).get(task_id)
    return ApiResponse(data=task_out(task, with_column=True), message="Task retrieved successfully")


@router.post("/tasks", response_model=ApiResponse[TaskOut], status_code=201)
def create_task(payload: TaskIn, storage: Storage = Depends(get_storage)):
    task = TaskService(storage).create(
        payload.columnId,
        payload.title,
        description=payload.description,
        priority=payload.priority,
        status=payload.status,
        due_date=payload.dueDate,
        position=payload.position,
    )
    return ApiResponse(data=task_out(task, with_column=True), statusCode=201, message="Task created successfully")


@router.put("/tasks/{task_id}", response_model=ApiResponse[TaskOut])
def update_task(task_id: str, payload: TaskPatch, storage: Storage = Depends(get_storage)):
    task = TaskService(storage).update(task_id, task_changes(payload))
    return ApiResponse(data=task_out(task, with_column=True), message="Task updated successfully")


@router.patch("/tasks/{task_id}/move", response_model=ApiResponse[TaskOut])
def move_task(task_id: str, payload: TaskMove, storage: Storage = Depends(get_storage)):
    task = TaskService(storage).move(task_id, payload.columnId, payload.position)
    return ApiResponse(data=task_out(task, with_column=True), message="Task moved successfully")


@router.delete("/tasks/{task_id}", response_model=ApiResponse)
def delete_task(task_id: str, storage: Storage = Depends(get_storage)):
    TaskService(storage).delete(task_id)
    return ApiResponse(message="Task deleted successfully")
