import time

import pytest
from sqlalchemy import text

from app.services.errors import StoreUnavailable
from app.storage import sql_provider
from app.storage.sql_provider import SqlDocumentStore


pytestmark = pytest.mark.anyio


async def test_events_newest_first_with_id_tie_break(store, seed):
    seed.event("e-1", "M1", minutes=5)
    seed.event("e-3", "M1", minutes=10)
    seed.event("e-2", "M1", minutes=10)
    seed.event("other", "M2", minutes=20)

    events = await store.list_events("M1")

    assert [e.id for e in events] == ["e-3", "e-2", "e-1"]
    assert events[0].author.uid == "owner-1"


async def test_assignment_queries_use_mapping_table(store, site_project):
    sub_tasks = await store.list_sub_tasks_assigned_to("sup-1")
    issues = await store.list_issues_assigned_to("mem-1")

    assert [s.id for s in sub_tasks] == ["S1"]
    assert sub_tasks[0].assigned_to_uids == {"sup-1"}
    assert [i.id for i in issues] == ["I3"]


async def test_users_by_ids_sorted_by_name(store, seed):
    seed.user("u-2", name="Zed")
    seed.user("u-1", name="amy")
    seed.user("u-3", name="Bob")

    users = await store.get_users_by_ids(["u-2", "u-1", "missing", "u-1"])

    assert [u.uid for u in users] == ["u-1", "u-2"]
    assert await store.get_users_by_ids([]) == []


async def test_id_lookups_are_chunked(store, seed, monkeypatch):
    monkeypatch.setattr(sql_provider, "MAX_IDS_PER_QUERY", 2)
    seed.project("P1")
    for n in range(5):
        seed.main_task(f"M{n}", "P1")

    found = await store.get_main_tasks([f"M{n}" for n in range(5)] + ["M-missing"])

    assert sorted(m.id for m in found) == ["M0", "M1", "M2", "M3", "M4"]


async def test_database_error_is_store_unavailable(store, session_factory):
    with session_factory() as db:
        db.execute(text("DROP TABLE sub_tasks"))
        db.commit()

    with pytest.raises(StoreUnavailable) as excinfo:
        await store.list_sub_tasks("P1")
    assert excinfo.value.operation == "list_sub_tasks"


async def test_slow_read_times_out(session_factory):
    store = SqlDocumentStore(session_factory, timeout_s=0.05)

    with pytest.raises(StoreUnavailable) as excinfo:
        await store._read("slow_read", lambda db: time.sleep(0.5))
    assert excinfo.value.reason == "timed out"
