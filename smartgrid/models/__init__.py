# =======================================================================================
# smartgrid/models/__init__.py - Models Package
# =======================================================================================
from .schemas import *
from .enums import *

__all__ = [
    "Module", "SlotTemplate", "MasterLayout", "Backpack", "ContentDefinition",
    "ModuleContent", "ReplacementResult", "PickListItem", "ModuleStatus",
    "OperationalStatus", "ExpiryStatus", "ReplacementStep", "PickAction",
]
