# =======================================================================================
# smartgrid/api/routes/backpacks.py - Kit Endpoints
# =======================================================================================
from typing import List
from fastapi import APIRouter, Depends, Query
from ...models.schemas import Backpack, CreateBackpackRequest, Module, PickListItem, SyncRequest
from ..dependencies import get_state
from ..state import AppState

router = APIRouter()


@router.get("/backpacks", response_model=List[Backpack])
def list_backpacks(state: AppState = Depends(get_state)):
    return state.monitor.list_backpacks()


@router.post("/backpacks", response_model=Backpack, status_code=201)
def create_backpack(request: CreateBackpackRequest, state: AppState = Depends(get_state)):
    return state.backpacks.create_backpack(request)


# ---- scanned QR / typed search; declared before /backpacks/{backpack_id} ----

@router.get("/backpacks/lookup", response_model=Backpack)
def lookup_backpack(
    query: str = Query(..., description="QR payload, kit id or part of the kit name"),
    state: AppState = Depends(get_state),
):
    return state.backpacks.lookup(query)


@router.get("/backpacks/{backpack_id}", response_model=Backpack)
def get_backpack(backpack_id: str, state: AppState = Depends(get_state)):
    return state.monitor.get_backpack(backpack_id)


@router.delete("/backpacks/{backpack_id}", status_code=204)
def delete_backpack(backpack_id: str, state: AppState = Depends(get_state)):
    state.backpacks.delete_backpack(backpack_id)


@router.get("/backpacks/{backpack_id}/modules", response_model=List[Module])
def effective_modules(backpack_id: str, state: AppState = Depends(get_state)):
    """Real modules plus MISSING placeholders for empty slots when the kit is not ready."""
    return state.monitor.effective_modules(backpack_id)


@router.get("/backpacks/{backpack_id}/picklist", response_model=List[PickListItem])
def pick_list(backpack_id: str, state: AppState = Depends(get_state)):
    return state.monitor.pick_list(backpack_id)


# ---- preparation mode ----

@router.post("/backpacks/{backpack_id}/preparation", response_model=Backpack)
def begin_preparation(backpack_id: str, state: AppState = Depends(get_state)):
    return state.backpacks.begin_preparation(backpack_id)


@router.delete("/backpacks/{backpack_id}/preparation", response_model=Backpack)
def end_preparation(backpack_id: str, state: AppState = Depends(get_state)):
    return state.backpacks.end_preparation(backpack_id)


# ---- controller heartbeat ----

@router.post("/backpacks/{backpack_id}/sync", response_model=Backpack)
def record_sync(backpack_id: str, request: SyncRequest, state: AppState = Depends(get_state)):
    return state.backpacks.record_sync(backpack_id, request.battery_level)
