"""Focus switching, toggle/delete interplay and cascade delete on both backends."""
import pytest
from sqlalchemy.exc import IntegrityError

from schemas import Attachment, Project, Resource, Todo
from storage.composite import (
    delete_project_cascade,
    delete_todo_with_focus,
    end_active_session,
    focus_task,
    toggle_todo_with_focus,
    unfocus,
)

USER = "u"


def _open_sessions(backend):
    return [s for s in backend.get_sessions(USER) if s.is_open]


def _seed_todos(backend, *ids):
    backend.save_todos(USER, [Todo(id=i, title=i, created_at=n) for n, i in enumerate(ids)])


def test_focus_switch_closes_previous_session(backend):
    _seed_todos(backend, "a", "b")
    focus_task(backend, USER, "a", now=1000, session_id="s1")
    focus_task(backend, USER, "b", now=4000, session_id="s2")

    sessions = {s.id: s for s in backend.get_sessions(USER)}
    assert sessions["s1"].ended_at == 4000
    assert sessions["s1"].end_reason == "switch"
    assert sessions["s2"].is_open
    assert [s.id for s in _open_sessions(backend)] == ["s2"]

    focus = backend.get_focus(USER)
    assert focus.active_task_id == "b"
    assert focus.focused_at == 4000

    todos = {t.id: t for t in backend.get_todos(USER)}
    assert todos["a"].total_focus_ms == 3000


def test_refocusing_same_task_keeps_one_open_session(backend):
    _seed_todos(backend, "a")
    for n in range(3):
        focus_task(backend, USER, "a", now=1000 * (n + 1), session_id=f"s{n}")
        assert len(_open_sessions(backend)) == 1
    assert backend.get_todos(USER)[0].total_focus_ms == 2000


def test_unfocus_clears_focus(backend):
    _seed_todos(backend, "a")
    focus_task(backend, USER, "a", now=1000, session_id="s1")
    unfocus(backend, USER, "manual", now=1600)

    assert backend.get_focus(USER) is None
    assert _open_sessions(backend) == []
    session = backend.get_sessions(USER)[0]
    assert session.end_reason == "manual"
    assert backend.get_todos(USER)[0].total_focus_ms == 600


def test_unfocus_without_session_is_harmless(backend):
    unfocus(backend, USER, "manual", now=10)
    end_active_session(backend, USER, "manual", now=10)
    assert backend.get_focus(USER) is None
    assert backend.get_sessions(USER) == []


def test_completing_focused_task_unfocuses(backend):
    _seed_todos(backend, "a")
    focus_task(backend, USER, "a", now=1000, session_id="s1")

    assert toggle_todo_with_focus(backend, USER, "a", now=2500) is True

    assert backend.get_focus(USER) is None
    session = backend.get_sessions(USER)[0]
    assert session.end_reason == "done"
    assert session.ended_at == 2500
    todo = backend.get_todos(USER)[0]
    assert todo.done is True
    assert todo.total_focus_ms == 1500


def test_completing_other_task_keeps_focus(backend):
    _seed_todos(backend, "a", "b")
    focus_task(backend, USER, "a", now=1000, session_id="s1")
    toggle_todo_with_focus(backend, USER, "b", now=2000)
    assert backend.get_focus(USER).active_task_id == "a"
    assert len(_open_sessions(backend)) == 1


def test_reopening_task_does_not_touch_focus(backend):
    _seed_todos(backend, "a")
    toggle_todo_with_focus(backend, USER, "a", now=1)
    focus_task(backend, USER, "a", now=1000, session_id="s1")
    assert toggle_todo_with_focus(backend, USER, "a", now=2000) is False
    assert backend.get_focus(USER).active_task_id == "a"


def test_toggle_missing_todo(backend):
    assert toggle_todo_with_focus(backend, USER, "missing", now=1) is None


def test_deleting_focused_todo(backend):
    _seed_todos(backend, "a", "b")
    focus_task(backend, USER, "a", now=1000, session_id="s1")
    delete_todo_with_focus(backend, USER, "a", now=1800)

    assert [t.id for t in backend.get_todos(USER)] == ["b"]
    assert backend.get_focus(USER) is None
    assert backend.get_sessions(USER)[0].end_reason == "manual"


def test_cascade_project_delete(backend):
    backend.save_projects(
        USER,
        [
            Project(
                id="p1",
                name="Doomed",
                created_at=1,
                resources=[Resource(id="r1", url="https://a", created_at=2)],
                attachments=[
                    Attachment(id="f1", name="a", url="/a", key="k1", created_at=3),
                    Attachment(id="f2", name="b", url="/b", key="k2", created_at=4),
                ],
            ),
            Project(id="p2", name="Kept", created_at=5),
        ],
    )
    backend.save_todos(
        USER,
        [
            Todo(id="a", title="a", created_at=1, project_id="p1"),
            Todo(id="b", title="b", created_at=2, project_id="p2"),
        ],
    )

    keys = delete_project_cascade(backend, USER, "p1")

    assert sorted(keys) == ["k1", "k2"]
    assert [p.id for p in backend.get_projects(USER)] == ["p2"]
    todos = {t.id: t for t in backend.get_todos(USER)}
    assert todos["a"].project_id is None
    assert todos["b"].project_id == "p2"


def test_cascade_delete_missing_project(backend):
    assert delete_project_cascade(backend, USER, "missing") == []


def test_relational_composite_rolls_back(relational):
    """A failing statement in a composite leaves nothing half-applied."""
    _seed_todos(relational, "a", "b")
    focus_task(relational, USER, "a", now=1000, session_id="s1")

    # Reusing s1 makes the OpenSession insert violate the primary key.
    with pytest.raises(IntegrityError):
        focus_task(relational, USER, "b", now=2000, session_id="s1")

    assert relational.get_focus(USER).active_task_id == "a"
    assert relational.get_sessions(USER)[0].is_open
    assert {t.id: t.total_focus_ms for t in relational.get_todos(USER)}["a"] in (None, 0)
