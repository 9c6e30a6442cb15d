"""Board, column and task orchestration.

Each mutating method runs as one unit of work: existence checks, parent
scope lock, position planning and every write happen inside a single
``Storage.transaction()`` so a failure leaves sibling positions untouched.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from .db import Board, ColumnModel, Task, TaskPriority, TaskStatus, User
from .errors import InvalidOperation, NotFound, ValidationFailed
from .positions import Placement, compute_remove_shift, plan_insert, plan_move
from .storage import Storage
from .utils import parse_due_date

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = ("To Do", "In Progress", "Done")
DEFAULT_COLOR = "#0079bf"


def apply_placement(storage: Storage, model, placement: Placement, item=None):
    for shift in placement.shifts:
        storage.shift(model, shift)
    if item is None:
        return None
    return storage.place(item, placement.scope_id, placement.position)


class BoardService:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def list(self, owner: User, include_columns: bool = False, include_tasks: bool = False) -> list[Board]:
        boards = self.storage.list_boards(owner.id, include_columns, include_tasks)
        logger.info("Retrieved %d boards", len(boards))
        return boards

    def get(self, board_id: str) -> Board:
        board = self.storage.get(Board, board_id)
        if board is None:
            raise NotFound("Board not found")
        return board

    def create(
        self,
        owner: User,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Board:
        with self.storage.transaction() as storage:
            board = Board(
                name=name.strip(),
                description=description.strip() if description else None,
                color=color or DEFAULT_COLOR,
                user_id=owner.id,
                columns=[ColumnModel(name=col, position=i) for i, col in enumerate(DEFAULT_COLUMNS)],
            )
            storage.add(board)
        logger.info("Created new board: %s (%s)", board.name, board.id)
        return board

    def update(self, board_id: str, changes: dict[str, Any]) -> Board:
        # only description may be cleared
        changes = {k: v for k, v in changes.items() if v is not None or k == "description"}
        with self.storage.transaction() as storage:
            board = self.get(board_id)
            if "name" in changes:
                changes["name"] = changes["name"].strip()
            if "description" in changes:
                changes["description"] = changes["description"].strip() if changes["description"] else None
            storage.update(board, **changes)
        logger.info("Updated board: %s (%s)", board.name, board.id)
        return board

    def delete(self, board_id: str) -> None:
        with self.storage.transaction() as storage:
            board = self.get(board_id)
            name = board.name
            storage.delete(board)
        logger.info("Deleted board: %s (%s)", name, board_id)


class ColumnService:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def get(self, column_id: str, board_id: Optional[str] = None) -> ColumnModel:
        if board_id is None:
            column = self.storage.get(ColumnModel, column_id)
        else:
            column = self.storage.get_column_in_board(board_id, column_id)
        if column is None:
            raise NotFound("Column not found")
        return column

    def create(self, board_id: str, name: str, position: Optional[int] = None) -> ColumnModel:
        with self.storage.transaction() as storage:
            if storage.lock_scope(Board, board_id) is None:
                raise NotFound("Board not found")
            placement = plan_insert(
                board_id,
                position,
                storage.count_in_scope(ColumnModel, board_id),
                storage.max_position(ColumnModel, board_id),
            )
            apply_placement(storage, ColumnModel, placement)
            column = storage.add(
                ColumnModel(name=name.strip(), board_id=board_id, position=placement.position)
            )
        logger.info("Created new column: %s in board %s", column.name, board_id)
        return column

    def update(
        self,
        column_id: str,
        name: Optional[str] = None,
        position: Optional[int] = None,
        board_id: Optional[str] = None,
    ) -> ColumnModel:
        with self.storage.transaction() as storage:
            column = self.get(column_id, board_id)
            if name:
                storage.update(column, name=name.strip())
            if position is not None:
                self._move(storage, column, position)
        logger.info("Updated column: %s (%s)", column.name, column.id)
        return column

    def reorder(self, column_id: str, position: int) -> ColumnModel:
        with self.storage.transaction() as storage:
            column = self.get(column_id)
            self._move(storage, column, position)
        logger.info("Reordered column: %s to position %d", column.name, column.position)
        return column

    def delete(self, column_id: str, board_id: Optional[str] = None) -> None:
        with self.storage.transaction() as storage:
            column = self.get(column_id, board_id)
            storage.lock_scope(Board, column.board_id)
            storage.session.refresh(column)
            if storage.count_in_scope(Task, column.id) > 0:
                raise InvalidOperation(
                    "Cannot delete column with tasks. Please move or delete all tasks first."
                )
            name, scope, removed = column.name, column.board_id, column.position
            storage.delete(column)
            apply_placement(storage, ColumnModel, Placement(scope, removed, [compute_remove_shift(scope, removed)]))
        logger.info("Deleted column: %s (%s)", name, column_id)

    def _move(self, storage: Storage, column: ColumnModel, position: int) -> ColumnModel:
        # columns never leave their board
        storage.lock_scope(Board, column.board_id)
        storage.session.refresh(column)
        placement = plan_move(
            column.board_id,
            column.position,
            column.board_id,
            position,
            storage.count_in_scope(ColumnModel, column.board_id),
        )
        return apply_placement(storage, ColumnModel, placement, column)


class TaskService:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def list(self, **filters) -> list[Task]:
        tasks = self.storage.list_tasks(**filters)
        logger.info("Retrieved %d tasks", len(tasks))
        return tasks

    def get(self, task_id: str) -> Task:
        task = self.storage.get(Task, task_id)
        if task is None:
            raise NotFound("Task not found")
        return task

    def create(
        self,
        column_id: str,
        title: str,
        description: Optional[str] = None,
        priority: Optional[TaskPriority] = None,
        status: Optional[TaskStatus] = None,
        due_date: Optional[str] = None,
        position: Optional[int] = None,
    ) -> Task:
        with self.storage.transaction() as storage:
            if storage.lock_scope(ColumnModel, column_id) is None:
                raise NotFound("Column not found")
            placement = plan_insert(
                column_id,
                position,
                storage.count_in_scope(Task, column_id),
                storage.max_position(Task, column_id),
            )
            apply_placement(storage, Task, placement)
            task = storage.add(
                Task(
                    title=title.strip(),
                    description=description,
                    column_id=column_id,
                    priority=priority or TaskPriority.MEDIUM,
                    status=status or TaskStatus.TODO,
                    due_date=_due_date(due_date),
                    position=placement.position,
                )
            )
        logger.info("Created new task: %s (%s)", task.title, task.id)
        return task

    def update(self, task_id: str, changes: dict[str, Any]) -> Task:
        """Apply a partial update; ``column_id``/``position`` changes go through the move path."""
        changes = dict(changes)
        column_id = changes.pop("column_id", None)
        position = changes.pop("position", None)
        if "due_date" in changes:
            changes["due_date"] = _due_date(changes["due_date"])
        if changes.get("title") is not None:
            changes["title"] = changes["title"].strip()
        with self.storage.transaction() as storage:
            task = self.get(task_id)
            if changes:
                storage.update(task, **changes)
            target = column_id or task.column_id
            if target != task.column_id or (position is not None and position != task.position):
                self._move(storage, task, target, position)
        logger.info("Updated task: %s (%s)", task.title, task.id)
        return task

    def move(self, task_id: str, column_id: str, position: int) -> Task:
        with self.storage.transaction() as storage:
            task = self.get(task_id)
            self._move(storage, task, column_id, position)
        logger.info("Moved task: %s to column %s at position %d", task.title, column_id, position)
        return task

    def delete(self, task_id: str) -> None:
        with self.storage.transaction() as storage:
            task = self.get(task_id)
            storage.lock_scope(ColumnModel, task.column_id)
            storage.session.refresh(task)
            title, scope, removed = task.title, task.column_id, task.position
            storage.delete(task)
            apply_placement(storage, Task, Placement(scope, removed, [compute_remove_shift(scope, removed)]))
        logger.info("Deleted task: %s (%s)", title, task_id)

    def _move(self, storage: Storage, task: Task, column_id: str, position: Optional[int]) -> Task:
        if column_id != task.column_id and storage.get(ColumnModel, column_id) is None:
            raise NotFound("Target column not found")
        # fixed lock order keeps two opposite cross-column moves from deadlocking
        for scope in sorted({task.column_id, column_id}):
            storage.lock_scope(ColumnModel, scope)
        storage.session.refresh(task)
        target_count = storage.count_in_scope(Task, column_id)
        if position is None:
            position = target_count if column_id != task.column_id else task.position
        placement = plan_move(task.column_id, task.position, column_id, position, target_count)
        return apply_placement(storage, Task, placement, task)


def _due_date(value: Optional[str]):
    try:
        return parse_due_date(value)
    except ValueError:
        raise ValidationFailed("Due date must be a valid ISO 8601 date") from None
