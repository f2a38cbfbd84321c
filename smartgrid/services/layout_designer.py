# =======================================================================================
# smartgrid/services/layout_designer.py - Master Layout Authoring
# =======================================================================================
import logging
import uuid
from typing import Optional
from ..config import config
from ..models.schemas import (
    AssignContentRequest,
    MasterLayout,
    PlaceSlotRequest,
    ResizeGridRequest,
    SlotTemplate,
)
from ..utils.exceptions import LayoutError, NotFoundError
from ..utils.validators import LayoutPlacementValidator
from .inventory_repository import InventoryRepository

logger = logging.getLogger(__name__)

# Pouch shapes the grid supports, as (width, height)
SHAPES = {
    "1x1": (1, 1),
    "2x1": (2, 1),
    "1x2": (1, 2),
    "2x2": (2, 2),
}


def shape_label(width: int, height: int) -> str:
    return f"{width}x{height}"


class LayoutDesigner:
    """Edits the master layout every kit is checked against. Each edit is saved immediately."""

    def __init__(self, repository: InventoryRepository, layout_id: Optional[str] = None):
        self.repository = repository
        self.layout_id = layout_id or config.MASTER_LAYOUT_ID

    def get_layout(self) -> MasterLayout:
        layout = self.repository.get_master_layout(self.layout_id)
        if layout is None:
            return MasterLayout(
                id=self.layout_id,
                grid_cols=config.DEFAULT_GRID_COLS,
                grid_rows=config.DEFAULT_GRID_ROWS,
                slots=[],
            )
        return layout

    def place_slot(self, request: PlaceSlotRequest) -> SlotTemplate:
        """Drop a new, unassigned (grey) slot of one of the supported shapes onto the grid."""
        label = request.label or shape_label(request.width, request.height)
        if SHAPES.get(label) != (request.width, request.height):
            raise LayoutError(f"Unsupported slot shape {label}", code="BAD_SHAPE")

        layout = self.get_layout()
        LayoutPlacementValidator.check_bounds(request, layout.grid_cols, layout.grid_rows)
        LayoutPlacementValidator.check_collision(request, layout.slots)

        slot = SlotTemplate(
            id=str(uuid.uuid4()),
            name=label,
            color="grey",
            pos_x=request.pos_x,
            pos_y=request.pos_y,
            width=request.width,
            height=request.height,
        )
        self._save(layout, layout.slots + [slot])
        logger.info("Layout %s: %s slot placed at (%s,%s)", self.layout_id, label, slot.pos_x, slot.pos_y)
        return slot

    def assign_content(self, slot_id: str, request: AssignContentRequest) -> SlotTemplate:
        layout = self.get_layout()
        slot = self._find(layout, slot_id)
        LayoutPlacementValidator.check_content_unique(layout.slots, slot_id, request.name, request.color)

        updated = slot.model_copy(update={"name": request.name, "color": request.color})
        self._save(layout, [updated if s.id == slot_id else s for s in layout.slots])
        return updated

    def remove_slot(self, slot_id: str) -> None:
        layout = self.get_layout()
        self._find(layout, slot_id)
        self._save(layout, [s for s in layout.slots if s.id != slot_id])

    def resize(self, request: ResizeGridRequest) -> MasterLayout:
        """Change the grid size; shrinking past an existing slot is refused."""
        layout = self.get_layout()
        for slot in layout.slots:
            LayoutPlacementValidator.check_bounds(slot, request.grid_cols, request.grid_rows)
        resized = layout.model_copy(update={"grid_cols": request.grid_cols, "grid_rows": request.grid_rows})
        return self.repository.save_master_layout(resized)

    def _save(self, layout: MasterLayout, slots) -> MasterLayout:
        return self.repository.save_master_layout(layout.model_copy(update={"slots": slots}))

    @staticmethod
    def _find(layout: MasterLayout, slot_id: str) -> SlotTemplate:
        for slot in layout.slots:
            if slot.id == slot_id:
                return slot
        raise NotFoundError(f"Slot {slot_id} not found in layout {layout.id}")
