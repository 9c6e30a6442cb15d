import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from taskboard.auth import cleanup_expired_magic_links
from taskboard.db import ColumnModel, MagicLink, Task, TaskPriority, TaskStatus
from taskboard.errors import InvalidOperation, NotFound, ValidationFailed
from taskboard.services import BoardService, ColumnService, TaskService
from taskboard.storage import Storage


def ordering(storage: Storage, model, scope_id: str) -> list[tuple[str, int]]:
    scope = getattr(model, model.__scope__)
    stmt = select(model.id, model.position).where(scope == scope_id).order_by(model.position, model.id)
    return [(row.id, row.position) for row in storage.session.execute(stmt)]


def assert_contiguous(storage: Storage, model, scope_id: str) -> None:
    positions = [pos for _, pos in ordering(storage, model, scope_id)]
    assert positions == list(range(len(positions)))


@pytest.fixture
def board(storage, owner):
    return BoardService(storage).create(owner, "Roadmap", "Q3 work")


@pytest.fixture
def columns(storage, board):
    return [c.id for c in sorted(board.columns, key=lambda c: c.position)]


def make_tasks(storage, column_id, *titles):
    service = TaskService(storage)
    return [service.create(column_id, title).id for title in titles]


def test_board_is_seeded_with_three_columns(storage, board):
    assert [(c.name, c.position) for c in sorted(board.columns, key=lambda c: c.position)] == [
        ("To Do", 0),
        ("In Progress", 1),
        ("Done", 2),
    ]
    assert board.color == "#0079bf"


def test_create_column_without_position_appends(storage, board):
    column = ColumnService(storage).create(board.id, "Blocked")
    assert column.position == 3
    assert_contiguous(storage, ColumnModel, board.id)


def test_create_column_at_position_pushes_tail(storage, board, columns):
    column = ColumnService(storage).create(board.id, "Review", position=1)
    assert ordering(storage, ColumnModel, board.id) == [
        (columns[0], 0),
        (column.id, 1),
        (columns[1], 2),
        (columns[2], 3),
    ]


def test_create_column_for_missing_board(storage):
    with pytest.raises(NotFound) as exc:
        ColumnService(storage).create("missing", "X")
    assert exc.value.message == "Board not found"


def test_reorder_column_right(storage, board, columns):
    extra = ColumnService(storage).create(board.id, "Blocked").id
    ColumnService(storage).reorder(columns[1], 3)
    assert ordering(storage, ColumnModel, board.id) == [
        (columns[0], 0),
        (columns[2], 1),
        (extra, 2),
        (columns[1], 3),
    ]


def test_reorder_column_to_same_position_changes_nothing(storage, board, columns):
    before = ordering(storage, ColumnModel, board.id)
    ColumnService(storage).reorder(columns[1], 1)
    assert ordering(storage, ColumnModel, board.id) == before


def test_reorder_column_out_of_range_is_rejected(storage, board, columns):
    with pytest.raises(InvalidOperation):
        ColumnService(storage).reorder(columns[0], 3)
    assert_contiguous(storage, ColumnModel, board.id)


def test_update_column_position_reshuffles_siblings(storage, board, columns):
    ColumnService(storage).update(columns[2], name="Shipped", position=0, board_id=board.id)
    assert ordering(storage, ColumnModel, board.id) == [
        (columns[2], 0),
        (columns[0], 1),
        (columns[1], 2),
    ]
    assert storage.get(ColumnModel, columns[2]).name == "Shipped"


def test_update_column_requires_matching_board(storage, owner, columns):
    other = BoardService(storage).create(owner, "Other")
    with pytest.raises(NotFound):
        ColumnService(storage).update(columns[0], name="X", board_id=other.id)


def test_delete_column_closes_gap(storage, board, columns):
    ColumnService(storage).delete(columns[0])
    assert ordering(storage, ColumnModel, board.id) == [(columns[1], 0), (columns[2], 1)]


def test_delete_column_with_tasks_is_refused(storage, board, columns):
    make_tasks(storage, columns[1], "Write docs")
    before = ordering(storage, ColumnModel, board.id)

    with pytest.raises(InvalidOperation) as exc:
        ColumnService(storage).delete(columns[1])
    assert "Cannot delete column with tasks" in exc.value.message

    assert ordering(storage, ColumnModel, board.id) == before
    assert len(ordering(storage, Task, columns[1])) == 1


def test_create_task_defaults(storage, columns):
    task = TaskService(storage).create(columns[0], "  Plan sprint ", due_date="2030-01-15")
    assert task.title == "Plan sprint"
    assert task.priority == TaskPriority.MEDIUM
    assert task.status == TaskStatus.TODO
    assert task.position == 0
    assert task.due_date.year == 2030


def test_create_task_rejects_bad_due_date(storage, columns):
    with pytest.raises(ValidationFailed):
        TaskService(storage).create(columns[0], "Bad", due_date="not-a-date")
    assert ordering(storage, Task, columns[0]) == []


def test_create_task_in_missing_column(storage):
    with pytest.raises(NotFound) as exc:
        TaskService(storage).create("missing", "Orphan")
    assert exc.value.message == "Column not found"


def test_tasks_append_in_order(storage, columns):
    ids = make_tasks(storage, columns[0], "a", "b", "c")
    assert ordering(storage, Task, columns[0]) == [(ids[0], 0), (ids[1], 1), (ids[2], 2)]


def test_move_task_across_columns(storage, columns):
    a = make_tasks(storage, columns[0], "a0", "a1", "a2")
    b = make_tasks(storage, columns[1], "b0", "b1")

    moved = TaskService(storage).move(a[1], columns[1], 1)

    assert moved.column_id == columns[1]
    assert ordering(storage, Task, columns[0]) == [(a[0], 0), (a[2], 1)]
    assert ordering(storage, Task, columns[1]) == [(b[0], 0), (a[1], 1), (b[1], 2)]


def test_move_task_within_column_left(storage, columns):
    ids = make_tasks(storage, columns[0], "a", "b", "c", "d")
    TaskService(storage).move(ids[3], columns[0], 1)
    assert ordering(storage, Task, columns[0]) == [(ids[0], 0), (ids[3], 1), (ids[1], 2), (ids[2], 3)]


def test_move_task_to_its_own_slot_changes_nothing(storage, columns):
    ids = make_tasks(storage, columns[0], "a", "b", "c")
    before = ordering(storage, Task, columns[0])

    task = TaskService(storage).move(ids[1], columns[0], 1)

    assert (task.column_id, task.position) == (columns[0], 1)
    assert ordering(storage, Task, columns[0]) == before


def test_update_task_with_unchanged_placement_changes_nothing(storage, columns):
    ids = make_tasks(storage, columns[0], "a", "b", "c")
    before = ordering(storage, Task, columns[0])

    task = TaskService(storage).update(ids[2], {"column_id": columns[0], "position": 2, "title": "c2"})

    assert task.title == "c2"
    assert ordering(storage, Task, columns[0]) == before


def test_move_task_to_missing_column(storage, columns):
    ids = make_tasks(storage, columns[0], "a")
    with pytest.raises(NotFound) as exc:
        TaskService(storage).move(ids[0], "missing", 0)
    assert exc.value.message == "Target column not found"


def test_update_task_column_appends_to_target(storage, columns):
    a = make_tasks(storage, columns[0], "a0", "a1")
    b = make_tasks(storage, columns[1], "b0")

    task = TaskService(storage).update(a[0], {"column_id": columns[1], "status": TaskStatus.IN_PROGRESS})

    assert task.status == TaskStatus.IN_PROGRESS
    assert ordering(storage, Task, columns[0]) == [(a[1], 0)]
    assert ordering(storage, Task, columns[1]) == [(b[0], 0), (a[0], 1)]


def test_update_task_fields_only(storage, columns):
    ids = make_tasks(storage, columns[0], "a", "b")
    task = TaskService(storage).update(ids[1], {"title": "renamed", "due_date": None})
    assert task.title == "renamed"
    assert task.due_date is None
    assert ordering(storage, Task, columns[0]) == [(ids[0], 0), (ids[1], 1)]


def test_delete_task_closes_gap(storage, columns):
    ids = make_tasks(storage, columns[0], "a", "b", "c")
    TaskService(storage).delete(ids[1])
    assert ordering(storage, Task, columns[0]) == [(ids[0], 0), (ids[2], 1)]


def test_delete_board_cascades(storage, board, columns):
    make_tasks(storage, columns[0], "a")
    BoardService(storage).delete(board.id)
    assert ordering(storage, ColumnModel, board.id) == []
    assert ordering(storage, Task, columns[0]) == []


def test_failed_final_write_rolls_back_shifts(storage, columns, monkeypatch):
    a = make_tasks(storage, columns[0], "a0", "a1", "a2")
    make_tasks(storage, columns[1], "b0", "b1")
    before_a = ordering(storage, Task, columns[0])
    before_b = ordering(storage, Task, columns[1])

    def broken_place(self, entity, scope_id, position):
        raise RuntimeError("disk full")

    monkeypatch.setattr(Storage, "place", broken_place)
    with pytest.raises(RuntimeError):
        TaskService(storage).move(a[1], columns[1], 0)
    monkeypatch.undo()

    assert ordering(storage, Task, columns[0]) == before_a
    assert ordering(storage, Task, columns[1]) == before_b


def test_random_operations_keep_positions_contiguous(storage, board, columns):
    rng = random.Random(7)
    column_service = ColumnService(storage)
    task_service = TaskService(storage)
    column_ids = list(columns)
    task_ids = []

    for step in range(120):
        op = rng.choice(["add_task", "add_task", "move_task", "delete_task", "add_column", "reorder_column"])
        if op == "add_task":
            column_id = rng.choice(column_ids)
            count = len(ordering(storage, Task, column_id))
            position = rng.choice([None, rng.randint(0, count)])
            task_ids.append(task_service.create(column_id, f"t{step}", position=position).id)
        elif op == "move_task" and task_ids:
            target = rng.choice(column_ids)
            task = task_service.get(rng.choice(task_ids))
            count = len(ordering(storage, Task, target))
            upper = count - 1 if target == task.column_id else count
            task_service.move(task.id, target, rng.randint(0, upper))
        elif op == "delete_task" and task_ids:
            task_service.delete(task_ids.pop(rng.randrange(len(task_ids))))
        elif op == "add_column":
            column_ids.append(column_service.create(board.id, f"c{step}").id)
        elif op == "reorder_column":
            column_service.reorder(rng.choice(column_ids), rng.randint(0, len(column_ids) - 1))

        assert_contiguous(storage, ColumnModel, board.id)
        for column_id in column_ids:
            assert_contiguous(storage, Task, column_id)

    assert sum(len(ordering(storage, Task, c)) for c in column_ids) == len(task_ids)


def test_cleanup_removes_only_expired_magic_links(storage, owner):
    now = datetime.now(timezone.utc)
    with storage.transaction():
        storage.add(MagicLink(token="old", email=owner.email, user_id=owner.id, expires_at=now - timedelta(hours=1)))
        storage.add(MagicLink(token="fresh", email=owner.email, expires_at=now + timedelta(hours=1)))

    assert cleanup_expired_magic_links(storage) == 1
    assert [link.token for link in storage.session.scalars(select(MagicLink))] == ["fresh"]
