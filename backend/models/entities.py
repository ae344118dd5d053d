"""
Reference data for the business entities the dashboard reports on.

The entity set is fixed and never derived from uploads.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional


class EntityId(str, Enum):
    """Business entity identity. Declaration order is the enumeration order."""
    JANASHAKTHI_LIMITED = 'janashakthi-limited'
    JANASHAKTHI_INSURANCE = 'janashakthi-insurance'
    FIRST_CAPITAL = 'first-capital'
    JANASHAKTHI_FINANCE = 'janashakthi-finance'


class EntityInfo(NamedTuple):
    id: EntityId
    name: str
    short_name: str
    description: str


ENTITIES: Dict[EntityId, EntityInfo] = {
    EntityId.JANASHAKTHI_LIMITED: EntityInfo(
        EntityId.JANASHAKTHI_LIMITED, 'Janashakthi Limited', 'JXG', 'Parent Entity'
    ),
    EntityId.JANASHAKTHI_INSURANCE: EntityInfo(
        EntityId.JANASHAKTHI_INSURANCE, 'Janashakthi Insurance PLC', 'JINS', 'Life Insurance'
    ),
    EntityId.FIRST_CAPITAL: EntityInfo(
        EntityId.FIRST_CAPITAL, 'First Capital Holdings PLC', 'FCH', 'Investment Banking'
    ),
    EntityId.JANASHAKTHI_FINANCE: EntityInfo(
        EntityId.JANASHAKTHI_FINANCE, 'Janashakthi Finance PLC', 'JF', 'Non-Financial Banking'
    ),
}


def parse_entity_id(value) -> Optional[EntityId]:
    """Return the EntityId for a raw id string, or None if unknown."""
    if isinstance(value, EntityId):
        return value
    try:
        return EntityId(str(value).strip())
    except ValueError:
        return None
