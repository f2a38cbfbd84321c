# =======================================================================================
# smartgrid/services/identifier_codec.py - RFID Identifier Encoding/Decoding
# =======================================================================================
"""
Tag identifiers are 8 characters, ``CCSSNNNN``:

- ``CC``   color/family code (01 red, 02 blue, ...)
- ``SS``   serial within the family, or ``XX`` for a slot that is not filled yet
- ``NNNN`` content catalog code

Real tags are always 8 ASCII digits. Placeholders (``CCXXNNNN``) only exist
at the display boundary; internally an unfilled slot is an ``EmptySlot``.
"""
from dataclasses import dataclass
from typing import Optional, Union
from ..models.enums import PLACEHOLDER_MARKER, COLOR_CODES, GREY_CODE

IDENTIFIER_LENGTH = 8


@dataclass(frozen=True)
class ParsedIdentifier:
    full_id: str
    color_type: str
    serial: str
    content_code: str

    @property
    def is_placeholder(self) -> bool:
        return self.serial == PLACEHOLDER_MARKER


@dataclass(frozen=True)
class RealTag:
    """A physical pouch's tag."""
    identifier: str

    @property
    def parsed(self) -> ParsedIdentifier:
        return decode(self.identifier)


@dataclass(frozen=True)
class EmptySlot:
    """A slot waiting for a pouch of the given family."""
    expected_color: str
    expected_content: str

    @property
    def identifier(self) -> str:
        return f"{self.expected_color}{PLACEHOLDER_MARKER}{self.expected_content}"

    @property
    def parsed(self) -> ParsedIdentifier:
        return ParsedIdentifier(self.identifier, self.expected_color, PLACEHOLDER_MARKER, self.expected_content)


Tag = Union[RealTag, EmptySlot]


def decode(identifier: str) -> ParsedIdentifier:
    """
    Split an identifier into its fields. Whitespace is ignored, so a formatted
    identifier decodes too; short input is right-padded with zeros.
    """
    identifier = identifier or ""
    compact = "".join(identifier.split())
    is_placeholder = PLACEHOLDER_MARKER in compact
    safe_id = compact.ljust(IDENTIFIER_LENGTH, "0")
    return ParsedIdentifier(
        full_id=identifier,
        color_type=safe_id[0:2],
        serial=PLACEHOLDER_MARKER if is_placeholder else safe_id[2:4],
        content_code=safe_id[4:8],
    )


def format_identifier(identifier: Optional[str]) -> str:
    """Render an identifier for humans: ``01 05 0001`` or ``01 -- 0001`` for an empty slot."""
    if not identifier:
        return ""
    is_placeholder = PLACEHOLDER_MARKER in identifier
    if len(identifier) != IDENTIFIER_LENGTH and not is_placeholder:
        return identifier

    color = identifier[0:2]
    content = identifier[4:8]
    if is_placeholder:
        return f"{color} -- {content}"
    return f"{color} {identifier[2:4]} {content}"


def is_real_identifier(identifier: Optional[str]) -> bool:
    """True for exactly 8 ASCII digits."""
    return (
        identifier is not None
        and len(identifier) == IDENTIFIER_LENGTH
        and identifier.isascii()
        and identifier.isdigit()
    )


def parse_tag(identifier: str) -> Tag:
    """Classify a raw identifier string as a real tag or an empty-slot placeholder."""
    parsed = decode(identifier)
    if parsed.is_placeholder:
        return EmptySlot(parsed.color_type, parsed.content_code)
    return RealTag(identifier)


def tag_identifier(tag: Union[Tag, str]) -> str:
    if isinstance(tag, str):
        return tag
    return tag.identifier


def color_code(color: Optional[str]) -> str:
    """Map a color family name to its 2-digit code; unset or unknown colors are grey."""
    return COLOR_CODES.get((color or "grey").lower(), GREY_CODE)


def content_code(code: Optional[str]) -> str:
    """Catalog code left-padded to 4 digits; missing codes become ``0000``."""
    code = (code or "").strip()
    return code.rjust(4, "0") if code else "0000"
