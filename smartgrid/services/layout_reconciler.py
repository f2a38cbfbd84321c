# =======================================================================================
# smartgrid/services/layout_reconciler.py - Effective Module View
# =======================================================================================
from typing import Dict, Iterable, List, Optional
from ..models.enums import ModuleStatus, OperationalStatus, PickAction
from ..models.schemas import Backpack, ContentDefinition, MasterLayout, Module, PickListItem, SlotTemplate
from .identifier_codec import EmptySlot, color_code, content_code

_PICK_ACTIONS = {
    ModuleStatus.OPENED: PickAction.REPLACE,
    ModuleStatus.MISSING: PickAction.PLACE,
    ModuleStatus.WRONG_POS: PickAction.MOVE,
}


class LayoutReconciler:
    """Overlays a kit's real modules onto the master layout."""

    @staticmethod
    def empty_slot_for(slot: SlotTemplate, catalog_codes: Dict[str, str]) -> EmptySlot:
        return EmptySlot(
            expected_color=color_code(slot.color),
            expected_content=content_code(catalog_codes.get(slot.name)),
        )

    def project(
        self,
        kit: Backpack,
        template: Optional[MasterLayout],
        catalog: Iterable[ContentDefinition],
    ) -> List[Module]:
        """
        Effective module list used for display and for the replacement workflow.

        Healthy kits are returned as-is (same list object). Kits that need attention
        or are being prepared get one entry per template slot: the real module at that
        placement, or a MISSING placeholder. Placeholders are never persisted.
        """
        if kit.operational_status not in (
            OperationalStatus.NEEDS_ATTENTION,
            OperationalStatus.IN_PREPARATION,
        ):
            return kit.modules
        if template is None:
            return kit.modules

        by_placement = {(m.pos_x, m.pos_y): m for m in kit.modules}
        catalog_codes: Dict[str, str] = {}
        for entry in catalog:
            catalog_codes.setdefault(entry.name, entry.code)

        effective: List[Module] = []
        for slot in template.slots:
            actual = by_placement.get((slot.pos_x, slot.pos_y))
            if actual is not None:
                effective.append(actual)
                continue
            effective.append(
                Module(
                    id=self.empty_slot_for(slot, catalog_codes).identifier,
                    name=slot.name,
                    color=slot.color,
                    status=ModuleStatus.MISSING,
                    backpack_id=kit.id,
                    pos_x=slot.pos_x,
                    pos_y=slot.pos_y,
                    width=slot.width,
                    height=slot.height,
                )
            )
        return effective

    @staticmethod
    def find_at(modules: Iterable[Module], pos_x: int, pos_y: int) -> Optional[Module]:
        for module in modules:
            if module.pos_x == pos_x and module.pos_y == pos_y:
                return module
        return None

    @staticmethod
    def build_pick_list(modules: Iterable[Module], configuring: bool = False) -> List[PickListItem]:
        """
        Modules that need a hand on them. While a kit is being prepared, empty slots
        are filled in order: only the first MISSING entry is actionable.
        """
        needing_action = [m for m in modules if m.status != ModuleStatus.OK]
        first_missing = None
        if configuring:
            first_missing = next(
                (i for i, m in enumerate(needing_action) if m.status == ModuleStatus.MISSING),
                None,
            )

        items: List[PickListItem] = []
        for index, module in enumerate(needing_action):
            actionable = (
                not configuring
                or module.status != ModuleStatus.MISSING
                or index == first_missing
            )
            items.append(
                PickListItem(
                    module=module,
                    action=_PICK_ACTIONS.get(module.status, PickAction.CHECK),
                    actionable=actionable,
                )
            )
        return items
