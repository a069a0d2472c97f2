"""Resource catalog - support channels matched by language and jurisdiction.

Read-only reference data. The catalog's own order is its relevance order;
severity-based reordering happens in the protocol builder.
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

MULTIPLE_LANGUAGES = "multiple"
INTERNATIONAL = "international"

# Older catalogs spell the jurisdiction wildcard as INTL
_JURISDICTION_ALIASES = {"intl": INTERNATIONAL}


class ResourceKind(Enum):
    """Support channel kinds."""
    HOTLINE = "hotline"
    EMERGENCY = "emergency"
    CHAT = "chat"
    TEXT = "text"
    WEBSITE = "website"
    APP = "app"
    LOCAL_SERVICE = "local_service"


# Lower sorts first for HIGH/CRITICAL protocols
KIND_PRIORITY: Dict[ResourceKind, int] = {
    ResourceKind.HOTLINE: 1,
    ResourceKind.EMERGENCY: 1,
    ResourceKind.CHAT: 2,
    ResourceKind.TEXT: 2,
    ResourceKind.WEBSITE: 3,
    ResourceKind.APP: 3,
    ResourceKind.LOCAL_SERVICE: 4,
}


def _normalize_jurisdiction(code: str) -> str:
    lowered = code.strip().lower()
    return _JURISDICTION_ALIASES.get(lowered, lowered)


@dataclass(frozen=True)
class Resource:
    """An external support channel."""
    id: str
    kind: ResourceKind
    name: str
    contact: str
    languages: FrozenSet[str] = field(default_factory=frozenset)
    jurisdictions: FrozenSet[str] = field(default_factory=frozenset)
    specializations: FrozenSet[str] = field(default_factory=frozenset)
    description: str = ""
    available_24x7: bool = True

    def matches(self, language: str, jurisdiction: str) -> bool:
        """Language (or the multiple wildcard) AND jurisdiction (or international)."""
        language_match = (
            language.lower() in self.languages or MULTIPLE_LANGUAGES in self.languages
        )
        jurisdiction_match = (
            _normalize_jurisdiction(jurisdiction) in self.jurisdictions
            or INTERNATIONAL in self.jurisdictions
        )
        return language_match and jurisdiction_match

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "description": self.description,
            "contact": self.contact,
            "available24x7": self.available_24x7,
            "languages": sorted(self.languages),
            "jurisdictions": sorted(self.jurisdictions),
            "specializations": sorted(self.specializations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        return cls(
            id=data["id"],
            kind=ResourceKind(data.get("kind") or data["type"]),
            name=data["name"],
            contact=data["contact"],
            languages=frozenset(lang.lower() for lang in data.get("languages", [])),
            jurisdictions=frozenset(
                _normalize_jurisdiction(code)
                for code in data.get("jurisdictions", data.get("countries", []))
            ),
            specializations=frozenset(data.get("specializations", [])),
            description=data.get("description", ""),
            available_24x7=data.get("available24x7", True),
        )


DEFAULT_RESOURCES: List[Resource] = [
    Resource(
        id="us_988",
        kind=ResourceKind.HOTLINE,
        name="988 Suicide & Crisis Lifeline",
        description="24/7 crisis support in the United States",
        contact="988",
        languages=frozenset({"en", "es"}),
        jurisdictions=frozenset({"us"}),
        specializations=frozenset({"suicide_prevention", "crisis_support", "mental_health"}),
    ),
    Resource(
        id="us_crisis_text",
        kind=ResourceKind.CHAT,
        name="Crisis Text Line",
        description="Free, 24/7 text support",
        contact="Text HOME to 741741",
        languages=frozenset({"en", "es"}),
        jurisdictions=frozenset({"us", "ca", "uk", "ie"}),
        specializations=frozenset({"crisis_support", "anxiety", "depression", "self_harm"}),
    ),
    Resource(
        id="uk_samaritans",
        kind=ResourceKind.HOTLINE,
        name="Samaritans",
        description="24/7 emotional support in the UK and Ireland",
        contact="116 123",
        languages=frozenset({"en"}),
        jurisdictions=frozenset({"uk", "ie"}),
        specializations=frozenset({"emotional_support", "crisis_support"}),
    ),
    Resource(
        id="ca_talk_suicide",
        kind=ResourceKind.HOTLINE,
        name="Talk Suicide Canada",
        description="24/7 suicide prevention service",
        contact="1-833-456-4566",
        languages=frozenset({"en", "fr"}),
        jurisdictions=frozenset({"ca"}),
        specializations=frozenset({"suicide_prevention", "crisis_support"}),
    ),
    Resource(
        id="au_lifeline",
        kind=ResourceKind.HOTLINE,
        name="Lifeline Australia",
        description="24/7 crisis support and suicide prevention",
        contact="13 11 14",
        languages=frozenset({"en"}),
        jurisdictions=frozenset({"au"}),
        specializations=frozenset({"crisis_support", "suicide_prevention"}),
    ),
    Resource(
        id="intl_befrienders",
        kind=ResourceKind.WEBSITE,
        name="Befrienders Worldwide",
        description="International directory of emotional support centers",
        contact="https://www.befrienders.org",
        languages=frozenset({MULTIPLE_LANGUAGES}),
        jurisdictions=frozenset({INTERNATIONAL}),
        specializations=frozenset({"emotional_support", "crisis_support"}),
    ),
]


class ResourceCatalog:
    """Pure lookup over a fixed resource table."""

    def __init__(self, resources: Optional[Iterable[Resource]] = None):
        self._resources = tuple(DEFAULT_RESOURCES if resources is None else resources)

        logger.info(
            "RESOURCE_CATALOG_LOADED",
            extra={"resource_count": len(self._resources)}
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "ResourceCatalog":
        """Load a catalog from a JSON list of resource objects."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls(Resource.from_dict(item) for item in data)

    def __len__(self) -> int:
        return len(self._resources)

    def lookup(self, language: str, jurisdiction: str) -> List[Resource]:
        """Resources available for a language and jurisdiction, in catalog order."""
        return [r for r in self._resources if r.matches(language, jurisdiction)]


_TIMEZONE_JURISDICTIONS = {
    "America/New_York": "us",
    "America/Los_Angeles": "us",
    "America/Chicago": "us",
    "America/Denver": "us",
    "America/Toronto": "ca",
    "America/Vancouver": "ca",
    "Europe/London": "uk",
    "Europe/Dublin": "ie",
    "Europe/Paris": "fr",
    "Europe/Berlin": "de",
    "Europe/Madrid": "es",
    "Europe/Lisbon": "pt",
    "Australia/Sydney": "au",
    "Australia/Melbourne": "au",
}


def country_from_timezone(timezone: Optional[str]) -> str:
    """Best-effort jurisdiction for an IANA timezone, else international."""
    return _TIMEZONE_JURISDICTIONS.get(timezone or "", INTERNATIONAL)
