# =======================================================================================
# smartgrid/models/schemas.py - Pydantic Models
# =======================================================================================
from datetime import date, datetime, time, timezone
from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator
from ..config import config
from .enums import ColorName, ModuleStatus, OperationalStatus, ReplacementStep, PickAction


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> Any:
    """Normalize DB/JSON timestamps: naive values are UTC, bare dates are midnight UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = value.strip()
        value = date.fromisoformat(value) if len(value) == 10 else datetime.fromisoformat(value)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    return value


# ========== Core records ==========

class GridPlacement(BaseModel):
    """A rectangle on the kit grid."""
    pos_x: int = Field(0, ge=0, description="Grid column (0-based)")
    pos_y: int = Field(0, ge=0, description="Grid row (0-based)")
    width: int = Field(1, ge=1, description="Column span")
    height: int = Field(1, ge=1, description="Row span")


class Module(GridPlacement):
    """A physical RFID-tagged pouch (or a synthesized placeholder for an empty slot)."""
    id: str = Field(..., description="8-character tag identifier")
    name: str = ""
    status: ModuleStatus = ModuleStatus.WAITING_FOR_MATCHMAKING
    last_update: datetime = Field(default_factory=utcnow)
    backpack_id: Optional[str] = None
    color: Optional[str] = None
    calculated_expiry: Optional[datetime] = None

    @field_validator("last_update", "calculated_expiry", mode="before")
    @classmethod
    def normalize_timestamps(cls, v):
        return as_utc(v)


class SlotTemplate(GridPlacement):
    """A slot of the master layout: what a fully stocked kit holds at this placement."""
    id: Optional[str] = None
    name: str = ""
    color: Optional[str] = "grey"


class MasterLayout(BaseModel):
    id: str
    grid_cols: int = Field(..., ge=1)
    grid_rows: int = Field(..., ge=1)
    slots: List[SlotTemplate] = []


class Backpack(BaseModel):
    id: str
    qr_code: str
    name: str
    hospital: Optional[str] = None
    type: Optional[str] = None
    last_sync: datetime = Field(default_factory=utcnow)
    battery_level: int = 100
    grid_cols: int = Field(default_factory=lambda: config.DEFAULT_GRID_COLS)
    grid_rows: int = Field(default_factory=lambda: config.DEFAULT_GRID_ROWS)
    operational_status: OperationalStatus = OperationalStatus.NEEDS_ATTENTION
    modules: List[Module] = []

    @field_validator("last_sync", mode="before")
    @classmethod
    def normalize_timestamps(cls, v):
        return as_utc(v)


class ContentDefinition(BaseModel):
    """Catalog entry: the type of content a pouch carries."""
    code: str = Field(..., min_length=1, max_length=4)
    name: str
    description: Optional[str] = None
    default_width: int = 1
    default_height: int = 1


class ModuleContent(BaseModel):
    id: Optional[str] = None
    module_id: str
    article_name: str
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None
    quantity: int = 1

    @field_validator("expiry_date", mode="before")
    @classmethod
    def normalize_timestamps(cls, v):
        return as_utc(v)


class ParsedIdentifierOut(BaseModel):
    full_id: str
    color_type: str
    serial: str
    content_code: str
    display: str
    placeholder: bool


# ========== Replacement protocol ==========

class ReplacementResult(BaseModel):
    success: bool
    message: str
    code: Optional[str] = None
    step: ReplacementStep = ReplacementStep.IDLE
    timestamp: datetime = Field(default_factory=utcnow)


class StartReplacementRequest(BaseModel):
    pos_x: int = Field(..., ge=0)
    pos_y: int = Field(..., ge=0)


class ScanRequest(BaseModel):
    scanned_id: str = Field(..., min_length=1, max_length=64, description="Scanned RFID identifier")


class ValidateRequest(BaseModel):
    old_id: str
    new_id: str


class ReplacementSessionOut(BaseModel):
    backpack_id: str
    target_x: int
    target_y: int
    step: ReplacementStep
    target: Optional[Module] = None


class PickListItem(BaseModel):
    module: Module
    action: PickAction
    actionable: bool


# ========== Admin requests ==========

class CreateBackpackRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1)
    hospital: Optional[str] = None
    type: Optional[str] = "Spoed"


class SyncRequest(BaseModel):
    battery_level: Optional[int] = Field(None, ge=0, le=100)


class RegisterModuleRequest(BaseModel):
    id: str = Field(..., description="8-digit RFID identifier")
    name: str
    color: ColorName = "grey"


class AddContentRequest(BaseModel):
    article_name: str
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None
    quantity: int = Field(1, ge=1)

    @field_validator("expiry_date", mode="before")
    @classmethod
    def normalize_timestamps(cls, v):
        return as_utc(v)


class PlaceSlotRequest(GridPlacement):
    label: Optional[str] = None


class AssignContentRequest(BaseModel):
    name: str
    color: ColorName


class ResizeGridRequest(BaseModel):
    grid_cols: int = Field(..., ge=1)
    grid_rows: int = Field(..., ge=1)


# ========== Health ==========

class HealthResponse(BaseModel):
    status: str                 # "ok" | "error"
    dataAvailable: bool
    message: Optional[str] = None
