"""
Seed the local database with a sample project hierarchy and one user per role.

Usage:
  python scripts/seed_test_data.py

Users are upserted by uid. The sample project is only created when the owner
has no project of that name yet, so re-running does not duplicate it. Prints a
bearer token per user for trying the API locally.
"""

from datetime import timedelta

from app.auth.security import create_access_token
from app.db import SessionLocal, Base, engine
from app.models.models import Project, User, utcnow
from app.schemas.hierarchy import IssueSeverity, TaskStatus
from app.services import task_service


PROJECT_NAME = "Harbour Lofts"


def ensure_user(session, uid: str, display_name: str, role: str, email: str = "") -> User:
    user = session.query(User).filter(User.uid == uid).first()
    if user:
        user.display_name = display_name
        user.role = role
        if email:
            user.email = email
        session.add(user)
        session.flush()
        return user
    user = User(uid=uid, display_name=display_name, role=role, email=email or None)
    session.add(user)
    session.flush()
    return user


def seed_project(session, owner: User, client: User, supervisor: User, member: User) -> Project:
    project = task_service.create_project(session, owner, name=PROJECT_NAME, client_uid=client.uid)
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    framing = task_service.create_main_task(session, owner, project_id=project.id, name="Framing")
    walls = task_service.create_sub_task(
        session, owner, main_task_id=framing.id, name="Exterior walls",
        due_date=today + timedelta(days=3), assigned_to_uids=[supervisor.uid],
    )
    roof = task_service.create_sub_task(
        session, owner, main_task_id=framing.id, name="Roof trusses",
        due_date=today + timedelta(days=7), assigned_to_uids=[member.uid],
    )

    finishing = task_service.create_main_task(session, owner, project_id=project.id, name="Finishing")
    task_service.create_sub_task(session, owner, main_task_id=finishing.id, name="Drywall", due_date=today + timedelta(days=14))
    task_service.create_sub_task(session, owner, main_task_id=finishing.id, name="Paint")

    task_service.update_sub_task_status(session, supervisor, sub_task_id=walls.id, status=TaskStatus.COMPLETED)
    task_service.update_sub_task_status(session, member, sub_task_id=roof.id, status=TaskStatus.IN_PROGRESS)
    task_service.open_issue(
        session, member, sub_task_id=roof.id, title="Truss delivery short by two",
        severity=IssueSeverity.CRITICAL, assigned_to_uids=[supervisor.uid],
    )
    return project


def main():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        owner = ensure_user(session, "owner.demo", "Olivia Owner", "owner", "owner@example.com")
        ensure_user(session, "admin.demo", "Adam Admin", "admin", "admin@example.com")
        supervisor = ensure_user(session, "supervisor.demo", "Sam Supervisor", "supervisor")
        member = ensure_user(session, "member.demo", "Mel Member", "member")
        client = ensure_user(session, "client.demo", "Cleo Client", "client", "cleo@client.example")

        existing = (
            session.query(Project)
            .filter(Project.owner_uid == owner.uid, Project.name == PROJECT_NAME)
            .first()
        )
        if existing is None:
            seed_project(session, owner, client, supervisor, member)

        session.commit()
        print("Seed completed: users and sample project upserted.")
        for user in (owner, supervisor, member, client):
            print(f"{user.uid} ({user.role}): {create_access_token(user.uid)}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
