# =======================================================================================
# smartgrid/api/routes/modules.py - Pouch & Catalog Endpoints
# =======================================================================================
from typing import List
from fastapi import APIRouter, Depends
from ...models.schemas import (
    AddContentRequest,
    ContentDefinition,
    Module,
    ModuleContent,
    RegisterModuleRequest,
)
from ...utils.exceptions import NotFoundError
from ..dependencies import get_state
from ..state import AppState

router = APIRouter()


# ---- pouches ----

@router.get("/modules", response_model=List[Module])
def list_modules(state: AppState = Depends(get_state)):
    return state.repository.get_all_modules()


@router.post("/modules", response_model=Module, status_code=201)
def register_module(request: RegisterModuleRequest, state: AppState = Depends(get_state)):
    return state.repository.register_module(request.id, request.name, request.color)


@router.get("/modules/{module_id}", response_model=Module)
def get_module(module_id: str, state: AppState = Depends(get_state)):
    module = state.repository.get_module_by_id(module_id)
    if module is None:
        raise NotFoundError(f"Module {module_id} not found")
    return module


@router.get("/modules/{module_id}/contents", response_model=List[ModuleContent])
def list_contents(module_id: str, state: AppState = Depends(get_state)):
    return state.repository.get_module_contents(module_id)


@router.post("/modules/{module_id}/contents", response_model=ModuleContent, status_code=201)
def add_content(module_id: str, request: AddContentRequest, state: AppState = Depends(get_state)):
    return state.repository.add_module_content(module_id, request)


@router.delete("/modules/{module_id}/contents", status_code=204)
def clear_contents(module_id: str, state: AppState = Depends(get_state)):
    state.repository.clear_module_contents(module_id)


# ---- catalog ----

@router.get("/catalog", response_model=List[ContentDefinition])
def list_catalog(state: AppState = Depends(get_state)):
    return state.repository.get_catalog()


@router.post("/catalog", response_model=ContentDefinition, status_code=201)
def add_catalog_entry(definition: ContentDefinition, state: AppState = Depends(get_state)):
    return state.repository.add_content_definition(definition)


@router.get("/catalog/{code}/name")
def content_name(code: str, state: AppState = Depends(get_state)):
    return {"code": code, "name": state.repository.get_content_name(code)}
