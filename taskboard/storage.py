from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Type, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from .db import Base, Board, ColumnModel, MagicLink, Task, TaskPriority, TaskStatus, User
from .positions import RangeShift

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=Base)

TASK_SORT_FIELDS = {
    "createdAt": Task.created_at,
    "updatedAt": Task.updated_at,
    "dueDate": Task.due_date,
    "priority": Task.priority,
    "position": Task.position,
}


def _scope_column(model):
    return getattr(model, model.__scope__)


class Storage:
    """SQLAlchemy-backed store for users, boards, columns and tasks.

    One instance wraps one session. Every write that touches sibling
    positions must run inside ``transaction()``.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def transaction(self) -> Iterator[Storage]:
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # === Generic entity operations ===
    def get(self, model: Type[M], entity_id: str) -> Optional[M]:
        return self.session.get(model, entity_id)

    def lock_scope(self, model: Type[M], entity_id: str) -> Optional[M]:
        """Load a parent row with ``FOR UPDATE`` so concurrent shifts in its scope serialize.

        SQLite has no row locks; there the engine opens every transaction
        with ``BEGIN IMMEDIATE`` instead (see ``db.build_engine``).
        """
        stmt = select(model).where(model.id == entity_id).with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def add(self, entity: M) -> M:
        self.session.add(entity)
        self.session.flush()
        return entity

    def update(self, entity: M, **fields) -> M:
        for name, value in fields.items():
            setattr(entity, name, value)
        self.session.flush()
        return entity

    def delete(self, entity: Base) -> None:
        self.session.delete(entity)
        self.session.flush()

    # === Positions ===
    def max_position(self, model, scope_id: str) -> Optional[int]:
        stmt = select(func.max(model.position)).where(_scope_column(model) == scope_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def count_in_scope(self, model, scope_id: str) -> int:
        stmt = select(func.count()).select_from(model).where(_scope_column(model) == scope_id)
        return self.session.execute(stmt).scalar_one()

    def shift(self, model, shift: RangeShift) -> int:
        conditions = [_scope_column(model) == shift.scope_id, model.position >= shift.lower]
        if shift.upper is not None:
            conditions.append(model.position <= shift.upper)
        stmt = (
            update(model)
            .where(*conditions)
            .values(position=model.position + shift.delta)
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        logger.debug(
            "Shifted %s %s rows in %s by %+d", result.rowcount, model.__tablename__, shift.scope_id, shift.delta
        )
        return result.rowcount

    def place(self, entity, scope_id: str, position: int):
        setattr(entity, entity.__scope__, scope_id)
        entity.position = position
        self.session.flush()
        return entity

    # === Board operations ===
    def list_boards(self, user_id: str, include_columns: bool = False, include_tasks: bool = False) -> list[Board]:
        stmt = select(Board).where(Board.user_id == user_id).order_by(Board.created_at.desc())
        if include_columns and include_tasks:
            stmt = stmt.options(selectinload(Board.columns).selectinload(ColumnModel.tasks))
        elif include_columns:
            stmt = stmt.options(selectinload(Board.columns))
        return list(self.session.execute(stmt).scalars())

    def get_column_in_board(self, board_id: str, column_id: str) -> Optional[ColumnModel]:
        stmt = select(ColumnModel).where(ColumnModel.id == column_id, ColumnModel.board_id == board_id)
        return self.session.execute(stmt).scalar_one_or_none()

    # === Task operations ===
    def list_tasks(
        self,
        column_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        sort_by: str = "position",
        sort_order: str = "asc",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Task]:
        stmt = select(Task)
        if column_id:
            stmt = stmt.where(Task.column_id == column_id)
        if status:
            stmt = stmt.where(Task.status == status)
        if priority:
            stmt = stmt.where(Task.priority == priority)
        order = TASK_SORT_FIELDS.get(sort_by, Task.position)
        stmt = stmt.order_by(order.desc() if sort_order == "desc" else order.asc(), Task.id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    # === Users ===
    def get_user_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.lower())
        return self.session.execute(stmt).scalar_one_or_none()

    def delete_expired_magic_links(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        stmt = delete(MagicLink).where(MagicLink.expires_at < now).execution_options(synchronize_session=False)
        result = self.session.execute(stmt)
        return result.rowcount
