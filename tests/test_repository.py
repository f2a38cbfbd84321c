from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from smartgrid.models.enums import ModuleStatus, OperationalStatus
from smartgrid.models.schemas import AddContentRequest, ContentDefinition
from smartgrid.services.inventory_repository import sanitize_status
from smartgrid.utils.exceptions import FormatError, NotFoundError, ProtocolError, TransportError

from conftest import KIT_ID, LAYOUT_ID, make_kit, make_module


def test_backpack_round_trips_with_modules(seeded_repo):
    kit = seeded_repo.get_backpack(KIT_ID)
    assert kit.qr_code == "smartgrid:bp:BP-1"
    assert kit.operational_status == OperationalStatus.OPERATIONAL
    assert {m.id for m in kit.modules} == {"01010001", "02010002"}
    assert kit.last_sync.tzinfo is not None
    assert seeded_repo.get_backpack("nope") is None


def test_save_backpack_detaches_displaced_modules(seeded_repo):
    kit = seeded_repo.get_backpack(KIT_ID)
    swapped = [m for m in kit.modules if m.id != "01010001"]
    swapped.append(make_module("01020001", 0, 0, width=2))
    seeded_repo.save_backpack(kit.model_copy(update={"modules": swapped}))

    released = seeded_repo.get_module_by_id("01010001")
    assert released.backpack_id is None
    assert released.status == ModuleStatus.WAITING_FOR_MATCHMAKING
    assert seeded_repo.get_module_by_id("01020001").backpack_id == KIT_ID


def test_save_backpack_refuses_placeholders(seeded_repo):
    kit = make_kit(modules=[make_module("01XX0001", 0, 0)])
    with pytest.raises(FormatError):
        seeded_repo.save_backpack(kit)


def _second_kit(modules):
    return make_kit(modules=modules).model_copy(
        update={"id": "BP-2", "qr_code": "smartgrid:bp:BP-2", "name": "Spoed 2"}
    )


def test_save_backpack_refuses_module_owned_by_another_kit(seeded_repo):
    taken = make_module("01010001", 0, 0, width=2, backpack_id="BP-2")
    with pytest.raises(ProtocolError) as exc:
        seeded_repo.save_backpack(_second_kit([taken]))

    assert exc.value.code == "ALREADY_ASSIGNED"
    assert seeded_repo.get_backpack("BP-2") is None
    assert seeded_repo.get_module_by_id("01010001").backpack_id == KIT_ID
    assert {m.id for m in seeded_repo.get_backpack(KIT_ID).modules} == {"01010001", "02010002"}


def test_commit_placement_builds_from_stored_kit(seeded_repo):
    placed = make_module("01020001", 0, 0, width=2)

    def swap(stored):
        kept = [m for m in stored.modules if m.id != "01010001"]
        return stored.model_copy(update={"modules": kept + [placed]})

    updated = seeded_repo.commit_placement(KIT_ID, placed, swap)

    assert {m.id for m in updated.modules} == {"01020001", "02010002"}
    assert seeded_repo.get_module_by_id("01020001").backpack_id == KIT_ID
    assert seeded_repo.get_module_by_id("01010001").backpack_id is None


def test_commit_placement_rechecks_owner(seeded_repo):
    seeded_repo.save_backpack(_second_kit([]))
    placed = make_module("02010002", 2, 0, backpack_id="BP-2")
    calls = []

    with pytest.raises(ProtocolError) as exc:
        seeded_repo.commit_placement("BP-2", placed, lambda stored: calls.append(stored) or stored)

    assert exc.value.code == "ALREADY_ASSIGNED"
    assert calls == []
    assert seeded_repo.get_module_by_id("02010002").backpack_id == KIT_ID


def test_commit_placement_unknown_module_or_kit(seeded_repo):
    with pytest.raises(ProtocolError) as exc:
        seeded_repo.commit_placement(KIT_ID, make_module("02990002", 2, 0), lambda stored: stored)
    assert exc.value.code == "NOT_REGISTERED"

    with pytest.raises(NotFoundError):
        seeded_repo.commit_placement("nope", make_module("02020002", 2, 0), lambda stored: stored)


def test_status_update_leaves_last_sync_alone(seeded_repo):
    before = seeded_repo.get_backpack(KIT_ID).last_sync
    seeded_repo.update_backpack_status(KIT_ID, OperationalStatus.NEEDS_ATTENTION)
    after = seeded_repo.get_backpack(KIT_ID)
    assert after.operational_status == OperationalStatus.NEEDS_ATTENTION
    assert after.last_sync == before


def test_record_sync_stamps_heartbeat_and_battery(seeded_repo):
    stamped = seeded_repo.record_sync(KIT_ID, battery_level=42)
    kit = seeded_repo.get_backpack(KIT_ID)
    assert kit.battery_level == 42
    assert abs((kit.last_sync - stamped).total_seconds()) < 1

    seeded_repo.record_sync(KIT_ID)
    assert seeded_repo.get_backpack(KIT_ID).battery_level == 42


def test_unknown_kit_writes_raise_not_found(seeded_repo):
    with pytest.raises(NotFoundError):
        seeded_repo.update_backpack_status("nope", OperationalStatus.OPERATIONAL)
    with pytest.raises(NotFoundError):
        seeded_repo.record_sync("nope")
    with pytest.raises(NotFoundError):
        seeded_repo.delete_backpack("nope")


def test_delete_backpack_releases_modules(seeded_repo):
    seeded_repo.delete_backpack(KIT_ID)
    assert seeded_repo.get_backpack(KIT_ID) is None
    for module_id in ("01010001", "02010002"):
        module = seeded_repo.get_module_by_id(module_id)
        assert module.backpack_id is None
        assert module.status == ModuleStatus.WAITING_FOR_MATCHMAKING


def test_register_module_rules(seeded_repo):
    with pytest.raises(FormatError):
        seeded_repo.register_module("01XX0001", "Airway", "red")
    with pytest.raises(ProtocolError) as excinfo:
        seeded_repo.register_module("01010001", "Airway", "red")
    assert excinfo.value.code == "ALREADY_ASSIGNED"

    module = seeded_repo.register_module(" 03010009 ", "Splint", "yellow")
    assert module.id == "03010009"
    assert seeded_repo.get_module_by_id("03010009").status == ModuleStatus.WAITING_FOR_MATCHMAKING


def test_contents_drive_calculated_expiry(seeded_repo):
    early = datetime(2027, 1, 1, tzinfo=timezone.utc)
    late = datetime(2028, 6, 1, tzinfo=timezone.utc)
    seeded_repo.add_module_content("01010001", AddContentRequest(article_name="Guedel", expiry_date=late))
    seeded_repo.add_module_content("01010001", AddContentRequest(article_name="Mask", expiry_date=early))

    assert seeded_repo.get_module_by_id("01010001").calculated_expiry == early
    assert [c.article_name for c in seeded_repo.get_module_contents("01010001")] == ["Mask", "Guedel"]

    seeded_repo.clear_module_contents("01010001")
    assert seeded_repo.get_module_contents("01010001") == []
    assert seeded_repo.get_module_by_id("01010001").calculated_expiry is None


def test_add_content_to_unknown_module(seeded_repo):
    with pytest.raises(NotFoundError):
        seeded_repo.add_module_content("09090009", AddContentRequest(article_name="Mask"))


def test_catalog_codes_are_padded(seeded_repo):
    assert [c.code for c in seeded_repo.get_catalog()] == ["0001", "0002"]
    seeded_repo.add_content_definition(ContentDefinition(code="2", name="Dressings"))
    assert seeded_repo.get_content_name("0002") == "Dressings"
    assert seeded_repo.get_content_name("0404") == "Unknown content"


def test_master_layout_round_trip(seeded_repo):
    layout = seeded_repo.get_master_layout(LAYOUT_ID)
    assert (layout.grid_cols, layout.grid_rows) == (4, 6)
    assert [s.id for s in layout.slots] == ["slot-airway", "slot-bandage"]
    assert seeded_repo.get_master_layout("other") is None


def test_writes_publish_change_signals(seeded_repo):
    seen = []
    unsubscribe = seeded_repo.feed.subscribe(seen.append)
    seeded_repo.update_backpack_status(KIT_ID, OperationalStatus.NEEDS_ATTENTION)
    seeded_repo.register_module("04010004", "Burns", "green")
    unsubscribe()
    seeded_repo.record_sync(KIT_ID)
    assert seen == ["backpacks", "modules"]


def test_invalid_stored_status_reads_as_error(seeded_repo, db):
    with db.get_connection() as conn:
        conn.exec_driver_sql("UPDATE modules SET status='BROKEN' WHERE id='02010002'")
    assert seeded_repo.get_module_by_id("02010002").status == ModuleStatus.ERROR
    assert sanitize_status("OK") == ModuleStatus.OK


def test_database_failures_become_transport_errors(seeded_repo, db):
    with db.get_connection() as conn:
        conn.exec_driver_sql("DROP TABLE backpacks")
    with pytest.raises(TransportError) as excinfo:
        seeded_repo.get_backpacks()
    assert isinstance(excinfo.value.__cause__, OperationalError)
