# =======================================================================================
# smartgrid/api/routes/layout.py - Master Layout Endpoints
# =======================================================================================
from fastapi import APIRouter, Depends
from ...models.schemas import (
    AssignContentRequest,
    MasterLayout,
    PlaceSlotRequest,
    ResizeGridRequest,
    SlotTemplate,
)
from ..dependencies import get_state
from ..state import AppState

router = APIRouter()


@router.get("/layout", response_model=MasterLayout)
def get_layout(state: AppState = Depends(get_state)):
    return state.designer.get_layout()


@router.post("/layout/slots", response_model=SlotTemplate, status_code=201)
def place_slot(request: PlaceSlotRequest, state: AppState = Depends(get_state)):
    return state.designer.place_slot(request)


@router.put("/layout/slots/{slot_id}/content", response_model=SlotTemplate)
def assign_content(slot_id: str, request: AssignContentRequest, state: AppState = Depends(get_state)):
    return state.designer.assign_content(slot_id, request)


@router.delete("/layout/slots/{slot_id}", status_code=204)
def remove_slot(slot_id: str, state: AppState = Depends(get_state)):
    state.designer.remove_slot(slot_id)


@router.put("/layout/grid", response_model=MasterLayout)
def resize_grid(request: ResizeGridRequest, state: AppState = Depends(get_state)):
    return state.designer.resize(request)
