# =======================================================================================
# smartgrid/models/enums.py - Enums and Constants
# =======================================================================================
from enum import Enum
from typing import Literal

# Type aliases for better type hints
ColorName = Literal["red", "blue", "yellow", "green", "grey"]


class ModuleStatus(str, Enum):
    """Status of a physical pouch."""
    OK = "OK"
    OPENED = "OPENED"
    MISSING = "MISSING"
    ERROR = "ERROR"
    WRONG_POS = "WRONG_POS"
    WAITING_FOR_MATCHMAKING = "WAITING_FOR_MATCHMAKING"


class OperationalStatus(str, Enum):
    """Single readiness status of a kit."""
    OPERATIONAL = "OPERATIONAL"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"
    IN_PREPARATION = "IN_PREPARATION"
    IN_USE = "IN_USE"


class ExpiryStatus(str, Enum):
    EXPIRED = "EXPIRED"
    WARNING = "WARNING"
    OK = "OK"


class ReplacementStep(str, Enum):
    """Steps of the scan-out / scan-in exchange."""
    IDLE = "IDLE"
    SCAN_OLD = "SCAN_OLD"
    SCAN_NEW = "SCAN_NEW"


class PickAction(str, Enum):
    REPLACE = "REPLACE"
    PLACE = "PLACE"
    MOVE = "MOVE"
    CHECK = "CHECK"


# Placeholder serial of a synthesized, not yet filled slot
PLACEHOLDER_MARKER = "XX"

# Color family -> 2-digit identifier prefix
COLOR_CODES = {
    "red": "01",
    "blue": "02",
    "yellow": "03",
    "green": "04",
    "grey": "00",
}
GREY_CODE = COLOR_CODES["grey"]
