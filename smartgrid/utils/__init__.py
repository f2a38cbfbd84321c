# =======================================================================================
# smartgrid/utils/__init__.py - Utils Package
# =======================================================================================
from .exceptions import *
from .validators import *

__all__ = [
    "SmartGridError", "FormatError", "ProtocolError", "CompatibilityError",
    "IntegrityError", "TransportError", "LayoutError", "NotFoundError",
    "FamilyValidator", "LayoutPlacementValidator", "validate_replacement",
]
