from smartgrid.models.enums import ModuleStatus, OperationalStatus, PickAction
from smartgrid.models.schemas import ContentDefinition
from smartgrid.services.layout_reconciler import LayoutReconciler

from conftest import make_kit, make_layout, make_module

reconciler = LayoutReconciler()
CATALOG = [
    ContentDefinition(code="0001", name="Airway"),
    ContentDefinition(code="0002", name="Bandages"),
    ContentDefinition(code="0099", name="Bandages"),
]


def test_operational_kit_is_returned_unchanged():
    kit = make_kit()
    assert reconciler.project(kit, make_layout(), CATALOG) is kit.modules


def test_no_template_returns_real_modules():
    kit = make_kit(status=OperationalStatus.NEEDS_ATTENTION)
    assert reconciler.project(kit, None, CATALOG) is kit.modules


def test_empty_slots_become_missing_placeholders():
    real = make_module("01010001", 0, 0, width=2)
    kit = make_kit(modules=[real], status=OperationalStatus.NEEDS_ATTENTION)

    effective = reconciler.project(kit, make_layout(), CATALOG)

    assert len(effective) == 2
    assert effective[0] is real
    placeholder = effective[1]
    assert placeholder.id == "02XX0002"
    assert placeholder.status == ModuleStatus.MISSING
    assert (placeholder.pos_x, placeholder.pos_y) == (2, 0)
    assert placeholder.name == "Bandages"
    assert placeholder.backpack_id == kit.id


def test_modules_off_the_template_are_not_shown():
    stray = make_module("04010005", 3, 5)
    kit = make_kit(modules=[stray], status=OperationalStatus.IN_PREPARATION)
    effective = reconciler.project(kit, make_layout(), [])
    assert stray not in effective
    assert [m.id for m in effective] == ["01XX0000", "02XX0000"]


def test_pick_list_maps_statuses_to_actions():
    modules = [
        make_module("01010001", 0, 0, status=ModuleStatus.OPENED),
        make_module("02010002", 1, 0, status=ModuleStatus.OK),
        make_module("03010003", 2, 0, status=ModuleStatus.WRONG_POS),
        make_module("04010004", 3, 0, status=ModuleStatus.ERROR),
        make_module("02XX0002", 0, 1, status=ModuleStatus.MISSING),
    ]
    items = LayoutReconciler.build_pick_list(modules)
    assert [(i.module.id, i.action) for i in items] == [
        ("01010001", PickAction.REPLACE),
        ("03010003", PickAction.MOVE),
        ("04010004", PickAction.CHECK),
        ("02XX0002", PickAction.PLACE),
    ]
    assert all(i.actionable for i in items)


def test_preparation_fills_empty_slots_one_at_a_time():
    modules = [
        make_module("01XX0001", 0, 0, status=ModuleStatus.MISSING),
        make_module("01010001", 1, 0, status=ModuleStatus.OPENED),
        make_module("02XX0002", 2, 0, status=ModuleStatus.MISSING),
    ]
    items = LayoutReconciler.build_pick_list(modules, configuring=True)
    assert [i.actionable for i in items] == [True, True, False]


def test_find_at():
    modules = [make_module("01010001", 0, 0, width=2), make_module("02010002", 2, 0)]
    assert LayoutReconciler.find_at(modules, 2, 0).id == "02010002"
    assert LayoutReconciler.find_at(modules, 1, 0) is None
