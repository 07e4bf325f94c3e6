"""Entity operations behave the same on the key-blob and relational backends."""
import pytest

from schemas import (
    Attachment,
    FocusSession,
    FocusState,
    PomodoroCycle,
    PomodoroLog,
    Project,
    Resource,
    TaskLog,
    Todo,
    UserSettings,
)
from storage import ProjectPatch, TodoPatch

USER = "alice@example.com"


def _todo(todo_id: str, created_at: int, **kwargs) -> Todo:
    return Todo(id=todo_id, title=f"Task {todo_id}", created_at=created_at, **kwargs)


def test_empty_reads(backend):
    assert backend.get_todos(USER) == []
    assert backend.get_projects(USER) == []
    assert backend.get_focus(USER) is None
    assert backend.get_sessions(USER) == []
    assert backend.get_pomodoro_logs(USER) == []
    assert backend.get_settings(USER) == UserSettings()


def test_todos_full_replacement(backend):
    backend.save_todos(USER, [_todo("a", 1), _todo("b", 2)])
    backend.save_todos(USER, [_todo("c", 3, detail="notes", total_focus_ms=500)])

    todos = backend.get_todos(USER)
    assert [t.id for t in todos] == ["c"]
    assert todos[0].detail == "notes"
    assert todos[0].total_focus_ms == 500


def test_todo_mutators(backend):
    backend.insert_todo(USER, _todo("a", 1, deadline=99))
    backend.update_todo(USER, "a", TodoPatch(title="Renamed", detail="d"))
    backend.update_todo(USER, "a", TodoPatch(title=""))
    backend.update_todo(USER, "a", TodoPatch(deadline=None))
    backend.toggle_todo(USER, "a")

    todo = backend.get_todos(USER)[0]
    assert todo.title == "Renamed"
    assert todo.detail == "d"
    assert todo.deadline is None
    assert todo.done is True

    backend.archive_todo(USER, "a", 1234)
    todo = backend.get_todos(USER)[0]
    assert todo.archived is True
    assert todo.archived_at == 1234

    backend.unarchive_todo(USER, "a")
    todo = backend.get_todos(USER)[0]
    assert not todo.archived
    assert todo.archived_at is None
    assert todo.done is False


def test_task_logs(backend):
    backend.insert_todo(USER, _todo("a", 1))
    assert backend.add_task_log(USER, "a", TaskLog(id="l1", text="first", created_at=10)) is True
    assert backend.add_task_log(USER, "a", TaskLog(id="l2", text="second", created_at=20)) is True
    assert backend.add_task_log(USER, "missing", TaskLog(id="l3", text="x", created_at=30)) is False

    backend.delete_task_log(USER, "a", "l1")
    logs = backend.get_todos(USER)[0].logs
    assert [log.id for log in logs] == ["l2"]


def test_set_todo_project(backend):
    backend.insert_todo(USER, _todo("a", 1))
    backend.set_todo_project(USER, "a", "p1")
    assert backend.get_todos(USER)[0].project_id == "p1"
    backend.set_todo_project(USER, "a", None)
    assert backend.get_todos(USER)[0].project_id is None


def test_projects_children(backend):
    backend.insert_project(USER, Project(id="p1", name="Thesis", created_at=5))
    backend.update_project(USER, "p1", ProjectPatch(detail="chapter 2", github_repo="me/thesis"))
    assert backend.add_project_resource(USER, "p1", Resource(id="r1", url="https://a", created_at=6)) is True
    assert backend.add_project_resource(USER, "nope", Resource(id="r2", url="https://b", created_at=7)) is False

    attachment = Attachment(id="f1", name="a.pdf", url="/f1", key="k/f1", created_at=8, size=3)
    assert backend.add_project_attachment(USER, "p1", attachment) == attachment

    project = backend.get_projects(USER)[0]
    assert project.detail == "chapter 2"
    assert project.github_repo == "me/thesis"
    assert [r.id for r in project.resources] == ["r1"]
    assert [a.key for a in project.attachments] == ["k/f1"]

    removed = backend.delete_project_attachment(USER, "p1", "f1")
    assert removed.key == "k/f1"
    assert backend.delete_project_attachment(USER, "p1", "f1") is None
    backend.delete_project_resource(USER, "p1", "r1")

    project = backend.get_projects(USER)[0]
    assert project.resources is None
    assert project.attachments is None


def test_project_archive(backend):
    backend.insert_project(USER, Project(id="p1", name="Thesis", created_at=5))
    backend.archive_project(USER, "p1", 77)
    project = backend.get_projects(USER)[0]
    assert project.archived is True and project.archived_at == 77
    backend.unarchive_project(USER, "p1")
    project = backend.get_projects(USER)[0]
    assert project.archived is None and project.archived_at is None


def test_focus_round_trip(backend):
    focus = FocusState(
        active_task_id="a",
        focused_at=100,
        session_paused=True,
        paused_at=150,
        accumulated_pause_ms=20,
        pomodoro=PomodoroCycle(started_at=100, duration=1500000, type="work", completed_pomodoros=1, paused=True),
    )
    backend.save_focus(USER, focus)
    assert backend.get_focus(USER) == focus
    backend.save_focus(USER, None)
    assert backend.get_focus(USER) is None


def test_sessions_and_active(backend):
    backend.save_sessions(
        USER,
        [
            FocusSession(id="s1", task_id="a", started_at=1, ended_at=5, end_reason="switch"),
            FocusSession(id="s2", task_id="b", started_at=5),
        ],
    )
    backend.start_session(USER, FocusSession(id="s3", task_id="c", started_at=9))
    assert [s.id for s in backend.get_sessions(USER)] == ["s1", "s2", "s3"]
    assert backend.get_active_session(USER).id == "s2"


def test_pomodoro_logs(backend):
    backend.log_pomodoro(USER, PomodoroLog(task_id="a", type="work", duration=1500000, completed_at=10))
    backend.replace_pomodoro_logs(
        USER,
        [
            PomodoroLog(task_id="a", type="work", duration=1500000, completed_at=10),
            PomodoroLog(task_id="a", type="short-break", duration=300000, completed_at=20),
        ],
    )
    assert [entry.type for entry in backend.get_pomodoro_logs(USER)] == ["work", "short-break"]


def test_settings(backend):
    settings = UserSettings(work_ms=50 * 60000, short_break_ms=10 * 60000, long_break_ms=20 * 60000, theme="paper")
    backend.save_settings(USER, settings)
    assert backend.get_settings(USER) == settings


def test_users_are_isolated(backend):
    backend.insert_todo(USER, _todo("a", 1))
    assert backend.get_todos("bob@example.com") == []


def test_legacy_settings_merge_partial_blob(legacy, redis_client):
    redis_client.set(f"settings:{USER}", '{"theme": "nothing"}')
    settings = legacy.get_settings(USER)
    assert settings.theme == "nothing"
    assert settings.work_ms == UserSettings().work_ms


def test_legacy_repo_info_expires(legacy, redis_client):
    from schemas import RepoInfo

    legacy.save_repo_info(USER, "p1", RepoInfo(full_name="me/thesis", stars=3))
    assert legacy.get_repo_info(USER, "p1").stars == 3
    assert 0 < redis_client.ttl(f"github:{USER}:p1") <= 900
    legacy.delete_repo_info(USER, "p1")
    assert legacy.get_repo_info(USER, "p1") is None


# Every list below is deliberately out of creation order, with a created_at tie.
UNSORTED_COLLECTIONS = {
    "todos": (
        "save_todos",
        "get_todos",
        [
            _todo(
                "c",
                3,
                logs=[
                    TaskLog(id="l2", text="later", created_at=20),
                    TaskLog(id="l1", text="first", created_at=10),
                ],
            ),
            _todo("z", 5),
            _todo("y", 5),
            _todo("a", 1, done=True),
        ],
    ),
    "projects": (
        "save_projects",
        "get_projects",
        [
            Project(
                id="p2",
                name="Later",
                created_at=9,
                resources=[
                    Resource(id="r2", url="https://b", created_at=8),
                    Resource(id="r1", url="https://a", created_at=2),
                ],
                attachments=[
                    Attachment(id="f2", name="b.pdf", url="/f2", key="k/f2", created_at=7),
                    Attachment(id="f1", name="a.pdf", url="/f1", key="k/f1", created_at=3),
                ],
            ),
            Project(id="p1", name="Earlier", created_at=1),
        ],
    ),
    "sessions": (
        "save_sessions",
        "get_sessions",
        [
            FocusSession(id="s3", task_id="c", started_at=30),
            FocusSession(id="s1", task_id="a", started_at=10, ended_at=20, end_reason="manual"),
            FocusSession(id="s2", task_id="b", started_at=10, ended_at=15, end_reason="switch"),
        ],
    ),
    "pomodoro_logs": (
        "replace_pomodoro_logs",
        "get_pomodoro_logs",
        [
            PomodoroLog(task_id="b", type="short-break", duration=300000, completed_at=30),
            PomodoroLog(task_id="a", type="work", duration=1500000, completed_at=10),
            PomodoroLog(task_id="a", type="work", duration=1500000, completed_at=10),
        ],
    ),
}


@pytest.mark.parametrize("category", sorted(UNSORTED_COLLECTIONS))
def test_collections_read_back_in_written_order(backend, category):
    save, get, value = UNSORTED_COLLECTIONS[category]
    getattr(backend, save)(USER, value)
    expected = [p.compact() for p in value] if category == "projects" else value
    assert getattr(backend, get)(USER) == expected


def test_single_inserts_land_where_the_legacy_list_puts_them(backend):
    backend.save_todos(USER, [_todo("a", 5), _todo("b", 1)])
    backend.insert_todo(USER, _todo("c", 3))
    backend.add_task_log(USER, "a", TaskLog(id="l2", text="x", created_at=9))
    backend.add_task_log(USER, "a", TaskLog(id="l1", text="y", created_at=2))
    assert [t.id for t in backend.get_todos(USER)] == ["c", "a", "b"]
    assert [log.id for log in backend.get_todos(USER)[1].logs] == ["l2", "l1"]

    backend.save_projects(USER, [Project(id="p2", name="B", created_at=9)])
    backend.insert_project(USER, Project(id="p1", name="A", created_at=1))
    backend.add_project_resource(USER, "p2", Resource(id="r2", url="https://b", created_at=5))
    backend.add_project_resource(USER, "p2", Resource(id="r1", url="https://a", created_at=1))
    projects = backend.get_projects(USER)
    assert [p.id for p in projects] == ["p2", "p1"]
    assert [r.id for r in projects[0].resources] == ["r2", "r1"]

    backend.save_sessions(USER, [FocusSession(id="s2", task_id="a", started_at=50, ended_at=60)])
    backend.start_session(USER, FocusSession(id="s1", task_id="a", started_at=40))
    assert [s.id for s in backend.get_sessions(USER)] == ["s2", "s1"]

    backend.replace_pomodoro_logs(USER, [PomodoroLog(task_id="a", type="work", duration=1, completed_at=50)])
    backend.log_pomodoro(USER, PomodoroLog(task_id="a", type="work", duration=1, completed_at=10))
    assert [entry.completed_at for entry in backend.get_pomodoro_logs(USER)] == [50, 10]
