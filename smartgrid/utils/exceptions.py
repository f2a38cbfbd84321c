# =======================================================================================
# smartgrid/utils/exceptions.py - Custom Exceptions
# =======================================================================================
from typing import Optional


class SmartGridError(Exception):
    """Base exception for the kit readiness service."""

    default_code = "ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class FormatError(SmartGridError):
    """Raised when a scanned identifier is malformed."""
    default_code = "BAD_FORMAT"


class ProtocolError(SmartGridError):
    """Raised when a scan breaks the replacement protocol (wrong pouch, unavailable tag...)."""
    default_code = "PROTOCOL_ERROR"


class CompatibilityError(SmartGridError):
    """Raised when a new pouch does not belong to the slot's content family."""
    default_code = "INCOMPATIBLE"


class IntegrityError(SmartGridError):
    """Raised when completeness cannot be certified (no template to check against)."""
    default_code = "NO_TEMPLATE"


class TransportError(SmartGridError):
    """Raised when a repository call fails."""
    default_code = "TRANSPORT_ERROR"


class LayoutError(SmartGridError):
    """Raised when a master layout edit is rejected."""
    default_code = "LAYOUT_REJECTED"


class NotFoundError(SmartGridError):
    """Raised when a kit, module or slot does not exist."""
    default_code = "NOT_FOUND"
