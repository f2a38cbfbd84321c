# =======================================================================================
# smartgrid/api/routes/replacement.py - Pouch Replacement Endpoints
# =======================================================================================
from fastapi import APIRouter, Depends
from ...models.schemas import (
    ParsedIdentifierOut,
    ReplacementResult,
    ReplacementSessionOut,
    ScanRequest,
    StartReplacementRequest,
    ValidateRequest,
)
from ...services.identifier_codec import decode, format_identifier
from ...services.replacement import ReplacementService
from ...utils.exceptions import NotFoundError
from ..dependencies import get_state
from ..state import AppState

router = APIRouter()


@router.post("/backpacks/{backpack_id}/replacement", response_model=ReplacementSessionOut)
def start_replacement(
    backpack_id: str, request: StartReplacementRequest, state: AppState = Depends(get_state)
):
    return state.replacement.start(backpack_id, request.pos_x, request.pos_y)


@router.get("/backpacks/{backpack_id}/replacement", response_model=ReplacementSessionOut)
def get_replacement(backpack_id: str, state: AppState = Depends(get_state)):
    session = state.replacement.get(backpack_id)
    if session is None:
        raise NotFoundError(f"No replacement in progress for backpack {backpack_id}", code="NO_SESSION")
    return state.replacement.describe(session)


@router.post("/backpacks/{backpack_id}/replacement/scan", response_model=ReplacementResult)
def scan(backpack_id: str, request: ScanRequest, state: AppState = Depends(get_state)):
    """Feed one scanned tag into the session: the old pouch first, then the new one."""
    return state.replacement.scan(backpack_id, request.scanned_id)


@router.post("/backpacks/{backpack_id}/replacement/skip", response_model=ReplacementResult)
def skip_old(backpack_id: str, state: AppState = Depends(get_state)):
    return state.replacement.skip(backpack_id)


@router.delete("/backpacks/{backpack_id}/replacement", response_model=ReplacementResult)
def cancel_replacement(backpack_id: str, state: AppState = Depends(get_state)):
    return state.replacement.cancel(backpack_id)


# ---- stateless checks used by batch harnesses ----

@router.post("/validate", response_model=ReplacementResult)
def validate(request: ValidateRequest):
    return ReplacementService.validate(request.old_id, request.new_id)


@router.get("/identifiers/{identifier}", response_model=ParsedIdentifierOut)
def decode_identifier(identifier: str):
    parsed = decode(identifier)
    return ParsedIdentifierOut(
        full_id=parsed.full_id,
        color_type=parsed.color_type,
        serial=parsed.serial,
        content_code=parsed.content_code,
        display=format_identifier(identifier),
        placeholder=parsed.is_placeholder,
    )
