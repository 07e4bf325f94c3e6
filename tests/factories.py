"""Legacy-store seed data shared by the migration tests."""
from schemas import FocusSession, PomodoroLog, Project, Resource, TaskLog, Todo, UserSettings


def seed_user(legacy, user_id: str, n: int = 0) -> None:
    """Two todos (one with a log and focus time), a project with a resource,
    a closed session, one pomodoro log and non-default settings."""
    legacy.save_todos(
        user_id,
        [
            Todo(
                id=f"{user_id}-t1",
                title="Write intro",
                created_at=100 + n,
                total_focus_ms=60000,
                logs=[TaskLog(id="l1", text="started", created_at=150)],
                project_id=f"{user_id}-p1",
            ),
            Todo(id=f"{user_id}-t2", title="Review", created_at=200 + n, done=True),
        ],
    )
    legacy.save_projects(
        user_id,
        [
            Project(
                id=f"{user_id}-p1",
                name="Thesis",
                created_at=50,
                resources=[Resource(id="r1", url="https://example.com", created_at=60)],
            )
        ],
    )
    legacy.save_sessions(
        user_id,
        [FocusSession(id="s1", task_id=f"{user_id}-t1", started_at=1000, ended_at=61000, end_reason="switch")],
    )
    legacy.replace_pomodoro_logs(
        user_id, [PomodoroLog(task_id=f"{user_id}-t1", type="work", duration=1500000, completed_at=2000)]
    )
    legacy.save_settings(user_id, UserSettings(theme="paper"))
