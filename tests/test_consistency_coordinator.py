import pytest
from sqlalchemy import select

from app.models import ClassModel
from app.services.consistency_coordinator import ConsistencyCoordinator

from .conftest import YEAR

pytestmark = pytest.mark.anyio


class RecordingInvalidator:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def invalidate(self, entity_kind, entity_id):
        self.calls.append((entity_kind, entity_id))
        if self.fail:
            raise ConnectionError("redis down")


class RecordingAuditLogger:
    def __init__(self):
        self.entries = []

    async def log(self, actor_id, action, resource_kind, resource_id, details=None):
        self.entries.append((actor_id, action, resource_kind, resource_id, details))


def new_class(code="10A1"):
    return ClassModel(code=code, name=f"Class {code}", grade_level=10, academic_year=YEAR, maximum_students=30)


async def codes(db):
    return (await db.execute(select(ClassModel.code).order_by(ClassModel.code))).scalars().all()


async def test_hooks_run_only_after_commit(db):
    invalidator = RecordingInvalidator()
    auditor = RecordingAuditLogger()
    coordinator = ConsistencyCoordinator(db, cache_invalidator=invalidator, audit_logger=auditor, actor_id="admin-1")

    async with coordinator.atomic():
        class_obj = new_class()
        db.add(class_obj)
        await db.flush()
        coordinator.invalidate("class", class_obj.id)
        coordinator.invalidate("class", class_obj.id)
        coordinator.audit("CREATE", "class", class_obj.id, {"code": "10A1"})
        assert invalidator.calls == []
        assert auditor.entries == []

    assert await codes(db) == ["10A1"]
    assert invalidator.calls == [("class", class_obj.id)]
    assert auditor.entries == [("admin-1", "CREATE", "class", class_obj.id, {"code": "10A1"})]


async def test_failure_rolls_back_and_discards_hooks(db):
    invalidator = RecordingInvalidator()
    auditor = RecordingAuditLogger()
    coordinator = ConsistencyCoordinator(db, cache_invalidator=invalidator, audit_logger=auditor)

    with pytest.raises(ValueError):
        async with coordinator.atomic():
            db.add(new_class())
            await db.flush()
            coordinator.invalidate("class", "x")
            coordinator.audit("CREATE", "class", "x")
            raise ValueError("boom")

    assert await codes(db) == []
    assert invalidator.calls == []
    assert auditor.entries == []

    # The coordinator is usable again after a failed unit
    async with coordinator.atomic():
        db.add(new_class("10A2"))
    assert await codes(db) == ["10A2"]


async def test_units_do_not_nest(db):
    coordinator = ConsistencyCoordinator(db, cache_invalidator=RecordingInvalidator(), audit_logger=RecordingAuditLogger())

    async with coordinator.atomic():
        db.add(new_class())
        with pytest.raises(RuntimeError):
            async with coordinator.atomic():
                pass

    assert await codes(db) == ["10A1"]


async def test_hook_failure_does_not_undo_commit(db):
    invalidator = RecordingInvalidator(fail=True)
    auditor = RecordingAuditLogger()
    coordinator = ConsistencyCoordinator(db, cache_invalidator=invalidator, audit_logger=auditor)

    async with coordinator.atomic():
        db.add(new_class())
        coordinator.invalidate("class", "10A1")
        coordinator.audit("CREATE", "class", "10A1")

    assert await codes(db) == ["10A1"]
    assert invalidator.calls == [("class", "10A1")]
    assert len(auditor.entries) == 1
