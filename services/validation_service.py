"""
Validation Service - Filename/entity consistency guard.

Uploads are named after the entity they belong to. This module checks
that the uploaded filename matches the entity selected by the uploader
and, when it does not, works out which entity the file looks like it
belongs to so the caller can say so.
"""

import logging
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field

from backend.models.entities import ENTITIES, EntityId, parse_entity_id

logger = logging.getLogger(__name__)


def _patterns_for(entity_id: EntityId) -> Tuple[str, ...]:
    """Full name, name without PLC, id variants, then short code."""
    info = ENTITIES[entity_id]
    name = info.name.lower()
    patterns = [name]
    if name.endswith(' plc'):
        patterns.append(name[:-4])
    slug = entity_id.value
    patterns.extend([slug, slug.replace('-', '_'), slug.replace('-', ' '), info.short_name.lower()])

    ordered = []
    for pattern in patterns:
        if pattern not in ordered:
            ordered.append(pattern)
    return tuple(ordered)


# Enumeration order matters for detection
FILENAME_PATTERNS: Dict[EntityId, Tuple[str, ...]] = {
    entity_id: _patterns_for(entity_id) for entity_id in EntityId
}


class ValidationResult(BaseModel):
    """Outcome of a filename check."""

    is_valid: bool = Field(..., description="Filename matches the selected entity")
    detected_entity: Optional[str] = Field(None, description="Entity the filename appears to belong to")
    detected_entity_name: Optional[str] = Field(None, description="Display name of the detected entity")
    selected_entity_name: Optional[str] = Field(None, description="Display name of the selected entity")


def matches_entity(filename: str, entity_id: EntityId) -> bool:
    lowered = (filename or '').lower()
    return any(pattern in lowered for pattern in FILENAME_PATTERNS[entity_id])


def detect_entity(filename: str) -> Optional[EntityId]:
    """First entity, in enumeration order, whose patterns match the filename."""
    for entity_id in EntityId:
        if matches_entity(filename, entity_id):
            return entity_id
    return None


def validate_filename(filename: str, selected_entity_id) -> ValidationResult:
    """
    Validate an uploaded filename against the selected entity.

    Args:
        filename: Original upload filename
        selected_entity_id: Entity id chosen by the uploader

    Returns:
        ValidationResult; ``is_valid`` is False for unknown entity ids
    """
    selected = parse_entity_id(selected_entity_id)
    detected = detect_entity(filename)

    is_valid = selected is not None and matches_entity(filename, selected)

    result = ValidationResult(
        is_valid=is_valid,
        detected_entity=detected.value if detected else None,
        detected_entity_name=ENTITIES[detected].name if detected else None,
        selected_entity_name=ENTITIES[selected].name if selected else None,
    )

    if not is_valid:
        logger.warning(
            f"Filename '{filename}' does not match entity '{selected_entity_id}' "
            f"(detected: {result.detected_entity or 'none'})"
        )
    return result
