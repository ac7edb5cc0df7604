from datetime import datetime

import pytest

from app.models.models import Issue, IssueAssignment, MainTask, SubTask, SubTaskAssignment, TimelineEvent, User
from app.schemas.hierarchy import EventType, IssueSeverity, IssueStatus, TaskStatus
from app.services import task_service
from app.services.errors import AccessDenied, EntityNotFound


@pytest.fixture
def users(db):
    rows = {
        "owner": User(uid="owner-1", role="owner", display_name="Olivia Owner"),
        "other_owner": User(uid="owner-2", role="owner", display_name="Other Owner"),
        "sup": User(uid="sup-1", role="supervisor", display_name="Sam Supervisor"),
        "mem": User(uid="mem-1", role="member", display_name="Mel Member"),
        "client": User(uid="client-1", role="client", display_name="Cleo Client"),
    }
    db.add_all(rows.values())
    db.commit()
    return rows


@pytest.fixture
def hierarchy(db, users):
    project = task_service.create_project(db, users["owner"], name="Harbour Lofts", client_uid="client-1")
    main_task = task_service.create_main_task(db, users["owner"], project_id=project.id, name="Framing")
    first = task_service.create_sub_task(
        db, users["owner"], main_task_id=main_task.id, name="Walls", assigned_to_uids=["sup-1"]
    )
    second = task_service.create_sub_task(db, users["owner"], main_task_id=main_task.id, name="Roof")
    db.commit()
    return project, main_task, first, second


def _events(db, owner_entity_id):
    return [
        e.type
        for e in db.query(TimelineEvent)
        .filter(TimelineEvent.owner_entity_id == owner_entity_id)
        .order_by(TimelineEvent.timestamp, TimelineEvent.id)
        .all()
    ]


def test_only_owner_like_roles_create_projects(db, users):
    with pytest.raises(AccessDenied):
        task_service.create_project(db, users["sup"], name="Nope")
    project = task_service.create_project(db, users["owner"], name="  Site A  ")
    assert project.name == "Site A"
    assert project.owner_uid == "owner-1"


def test_creation_emits_task_created_events(db, hierarchy):
    _, main_task, first, _ = hierarchy
    assert _events(db, main_task.id) == [EventType.TASK_CREATED.value]
    assert _events(db, first.id) == [EventType.TASK_CREATED.value]
    event = db.query(TimelineEvent).filter(TimelineEvent.owner_entity_id == first.id).one()
    assert event.details["assignedToNames"] == ["Sam Supervisor"]
    assert event.author_name == "Olivia Owner"


def test_structure_edits_require_project_owner(db, users, hierarchy):
    project, main_task, _, _ = hierarchy
    with pytest.raises(AccessDenied):
        task_service.create_main_task(db, users["other_owner"], project_id=project.id, name="Other")
    with pytest.raises(AccessDenied):
        task_service.create_sub_task(db, users["sup"], main_task_id=main_task.id, name="Sneaky")


def test_missing_parent_is_not_found(db, users):
    with pytest.raises(EntityNotFound):
        task_service.create_sub_task(db, users["owner"], main_task_id="missing", name="x")


def test_assignee_can_change_status(db, users, hierarchy):
    _, _, first, _ = hierarchy
    task = task_service.update_sub_task_status(db, users["sup"], sub_task_id=first.id, status=TaskStatus.IN_PROGRESS)
    db.commit()
    assert task.status == "In Progress"
    assert EventType.STATUS_CHANGED.value in _events(db, first.id)


def test_non_assignee_cannot_change_status(db, users, hierarchy):
    _, _, _, second = hierarchy
    with pytest.raises(AccessDenied):
        task_service.update_sub_task_status(db, users["sup"], sub_task_id=second.id, status=TaskStatus.COMPLETED)


def test_same_status_is_a_no_op(db, users, hierarchy):
    _, _, first, _ = hierarchy
    task_service.update_sub_task_status(db, users["owner"], sub_task_id=first.id, status=TaskStatus.TODO)
    assert _events(db, first.id) == [EventType.TASK_CREATED.value]


def test_main_task_completed_and_reopened(db, users, hierarchy):
    _, main_task, first, second = hierarchy
    owner = users["owner"]
    task_service.update_sub_task_status(db, owner, sub_task_id=first.id, status=TaskStatus.COMPLETED)
    assert EventType.MAIN_TASK_COMPLETED.value not in _events(db, main_task.id)

    task_service.update_sub_task_status(db, owner, sub_task_id=second.id, status=TaskStatus.COMPLETED)
    assert EventType.MAIN_TASK_COMPLETED.value in _events(db, main_task.id)

    task_service.update_sub_task_status(db, owner, sub_task_id=second.id, status=TaskStatus.IN_PROGRESS)
    assert EventType.MAIN_TASK_REOPENED.value in _events(db, main_task.id)


def test_reassignment_records_diff(db, users, hierarchy):
    _, _, first, _ = hierarchy
    task = task_service.set_sub_task_assignees(db, users["owner"], sub_task_id=first.id, assigned_to_uids=["mem-1", "sup-1"])
    db.commit()
    assert task.assigned_to_uids == ["mem-1", "sup-1"]

    event = (
        db.query(TimelineEvent)
        .filter(TimelineEvent.owner_entity_id == first.id, TimelineEvent.type == EventType.ASSIGNMENT_CHANGED.value)
        .one()
    )
    assert event.details["assignedToUids"] == {"before": ["sup-1"], "after": ["mem-1", "sup-1"]}

    task = task_service.set_sub_task_assignees(db, users["owner"], sub_task_id=first.id, assigned_to_uids=["mem-1"])
    db.commit()
    assert db.get(SubTask, first.id).assigned_to_uids == ["mem-1"]


def test_issue_requires_sub_task_visibility(db, users, hierarchy):
    _, _, first, second = hierarchy
    with pytest.raises(AccessDenied):
        task_service.open_issue(db, users["sup"], sub_task_id=second.id, title="Not mine")
    with pytest.raises(AccessDenied):
        task_service.open_issue(db, users["client"], sub_task_id=first.id, title="Client")

    issue = task_service.open_issue(db, users["sup"], sub_task_id=first.id, title="Crack in stud", assigned_to_uids=["mem-1"])
    db.commit()
    assert issue.project_id == first.project_id
    assert EventType.ISSUE_CREATED.value in _events(db, first.id)


def test_issue_closed_by_owner_or_assignee(db, users, hierarchy):
    _, _, first, _ = hierarchy
    issue = task_service.open_issue(db, users["sup"], sub_task_id=first.id, title="Leak", assigned_to_uids=["mem-1"])
    db.commit()

    with pytest.raises(AccessDenied):
        task_service.set_issue_status(db, users["client"], issue_id=issue.id, status=IssueStatus.CLOSED)

    task_service.set_issue_status(db, users["mem"], issue_id=issue.id, status=IssueStatus.CLOSED)
    db.commit()
    assert db.get(Issue, issue.id).status == "Closed"
    assert EventType.ISSUE_STATUS_CHANGED.value in _events(db, first.id)


def test_owner_edits_sub_task_details(db, users, hierarchy):
    _, _, first, _ = hierarchy
    task = task_service.update_sub_task(
        db, users["owner"], sub_task_id=first.id,
        changes={"name": "  Walls, east side ", "due_date": datetime(2024, 6, 1)},
    )
    db.commit()

    assert task.name == "Walls, east side"
    event = (
        db.query(TimelineEvent)
        .filter(TimelineEvent.owner_entity_id == first.id, TimelineEvent.type == EventType.TASK_UPDATED.value)
        .one()
    )
    assert event.details["name"] == {"before": "Walls", "after": "Walls, east side"}
    assert event.details["due_date"]["after"] == "2024-06-01T00:00:00"


def test_assignee_edits_only_description_and_due_date(db, users, hierarchy):
    _, _, first, second = hierarchy
    task_service.update_sub_task(db, users["sup"], sub_task_id=first.id, changes={"description": "Use treated timber"})
    db.commit()
    assert db.get(SubTask, first.id).description == "Use treated timber"

    with pytest.raises(AccessDenied):
        task_service.update_sub_task(db, users["sup"], sub_task_id=first.id, changes={"name": "Renamed"})
    with pytest.raises(AccessDenied):
        task_service.update_sub_task(db, users["sup"], sub_task_id=second.id, changes={"description": "Not mine"})


def test_unchanged_sub_task_edit_records_nothing(db, users, hierarchy):
    _, _, first, _ = hierarchy
    task_service.update_sub_task(db, users["owner"], sub_task_id=first.id, changes={"name": "Walls"})
    assert _events(db, first.id) == [EventType.TASK_CREATED.value]


def test_main_task_rename_is_owner_only(db, users, hierarchy):
    _, main_task, _, _ = hierarchy
    with pytest.raises(AccessDenied):
        task_service.update_main_task(db, users["sup"], main_task_id=main_task.id, name="Structure")

    task_service.update_main_task(db, users["owner"], main_task_id=main_task.id, name="Structure")
    db.commit()
    assert db.get(MainTask, main_task.id).name == "Structure"
    assert EventType.MAIN_TASK_UPDATED.value in _events(db, main_task.id)


def test_issue_edit_by_owner_records_diff(db, users, hierarchy):
    _, _, first, _ = hierarchy
    issue = task_service.open_issue(db, users["sup"], sub_task_id=first.id, title="Leak", assigned_to_uids=["mem-1"])
    db.commit()

    with pytest.raises(AccessDenied):
        task_service.update_issue(db, users["mem"], issue_id=issue.id, changes={"title": "Not mine"})

    task_service.update_issue(db, users["sup"], issue_id=issue.id, changes={"severity": IssueSeverity.CRITICAL})
    db.commit()
    assert db.get(Issue, issue.id).severity == "Critical"
    event = (
        db.query(TimelineEvent)
        .filter(TimelineEvent.owner_entity_id == first.id, TimelineEvent.type == EventType.ISSUE_UPDATED.value)
        .one()
    )
    assert event.details["severity"] == {"before": "Normal", "after": "Critical"}
    assert event.details["issueId"] == issue.id


def test_delete_issue_emits_issue_deleted_on_sub_task(db, users, hierarchy):
    _, _, first, _ = hierarchy
    issue_id = task_service.open_issue(db, users["sup"], sub_task_id=first.id, title="Leak", assigned_to_uids=["mem-1"]).id
    db.commit()

    with pytest.raises(AccessDenied):
        task_service.delete_issue(db, users["mem"], issue_id=issue_id)

    task_service.delete_issue(db, users["owner"], issue_id=issue_id)
    db.commit()
    assert db.query(Issue).filter(Issue.id == issue_id).count() == 0
    assert db.query(IssueAssignment).filter(IssueAssignment.issue_id == issue_id).count() == 0
    assert EventType.ISSUE_DELETED.value in _events(db, first.id)


def test_delete_sub_task_cascades_issues(db, users, hierarchy):
    _, main_task, first, second = hierarchy
    main_task_id, first_id = main_task.id, first.id
    issue_id = task_service.open_issue(db, users["sup"], sub_task_id=first_id, title="Leak").id
    task_service.update_sub_task_status(db, users["owner"], sub_task_id=second.id, status=TaskStatus.COMPLETED)
    db.commit()

    with pytest.raises(AccessDenied):
        task_service.delete_sub_task(db, users["sup"], sub_task_id=first_id)

    deleted = task_service.delete_sub_task(db, users["owner"], sub_task_id=first_id)
    db.commit()

    assert set(deleted) == {first_id, issue_id}
    assert db.query(SubTask).filter(SubTask.id == first_id).count() == 0
    assert db.query(Issue).filter(Issue.id == issue_id).count() == 0
    assert db.query(SubTaskAssignment).filter(SubTaskAssignment.sub_task_id == first_id).count() == 0
    events = _events(db, main_task_id)
    assert EventType.TASK_DELETED.value in events
    # Only the completed sub-task remains
    assert EventType.MAIN_TASK_COMPLETED.value in events


def test_delete_main_task_cascades_everything_below(db, users, hierarchy):
    _, main_task, first, second = hierarchy
    ids = {main_task.id, first.id, second.id}
    main_task_id = main_task.id
    ids.add(task_service.open_issue(db, users["owner"], sub_task_id=second.id, title="Missing trusses").id)
    db.commit()

    with pytest.raises(AccessDenied):
        task_service.delete_main_task(db, users["other_owner"], main_task_id=main_task_id)

    deleted = task_service.delete_main_task(db, users["owner"], main_task_id=main_task_id)
    db.commit()

    assert set(deleted) == ids
    assert db.query(MainTask).filter(MainTask.id == main_task_id).count() == 0
    assert db.query(SubTask).filter(SubTask.parent_id == main_task_id).count() == 0
    assert db.query(Issue).filter(Issue.id.in_(ids)).count() == 0
    assert EventType.TASK_DELETED.value in _events(db, main_task_id)
