"""Deterministic persona identities.

An identity (name, sex, pronouns, voice) is a pure function of the case id
and role key, or of a shared persona key when one is configured. Names come
from fixed per-role tables indexed by a stable 32-bit string hash, so the
same persona never changes name between requests or processes.
"""

import json
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from casesim.core.logging import get_logger
from casesim.core.role_mapping import NURSE_KEY, OWNER_KEY
from casesim.core.schemas_cases import CaseFieldsSnapshot
from casesim.core.schemas_personas import (
    PersonaIdentity,
    PersonaPronouns,
    PersonaSeedContext,
    PersonaSex,
)

logger = get_logger(__name__)


def stable_hash(value: str) -> int:
    """Signed 32-bit ``h * 31 + c`` string hash, returned as its absolute value."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return abs(h)


@dataclass(frozen=True)
class NameEntry:
    first: str
    last: str
    honorific: str | None = None


@dataclass(frozen=True)
class RoleIdentityConfig:
    sex: PersonaSex
    voice_id: str
    names: tuple[NameEntry, ...]
    default_honorific: str | None = None


def _names(*pairs: str, honorific: str | None = None) -> tuple[NameEntry, ...]:
    entries = []
    for pair in pairs:
        first, last = pair.split(" ", 1)
        entries.append(NameEntry(first=first, last=last, honorific=honorific))
    return tuple(entries)


DEFAULT_CONFIG = RoleIdentityConfig(
    sex="female",
    voice_id="alice",
    names=_names("Alexandra Morgan", "Victoria Lee", "Charlotte Quinn", "Olivia Adams"),
)

ROLE_CONFIG: dict[str, RoleIdentityConfig] = {
    OWNER_KEY: RoleIdentityConfig(
        sex="female",
        voice_id="alice",
        names=_names(
            "Sarah Bennett", "Emma Thompson", "Mary Williams", "Patricia Johnson",
            "Jennifer Brown", "Elizabeth Jones", "Linda Miller", "Barbara Davis",
            "Susan Clarke", "Jessica Wright", "Karen Wilson", "Nancy Hughes",
            "Lisa Anderson", "Margaret Taylor", "Betty Thomas", "Sandra Edwards",
            "Ashley Moore", "Dorothy Martin", "Kimberly Jackson", "Emily Thompson",
            "Donna White", "Michelle Roberts", "Carol Lee", "Amanda Harris",
            "Melissa Cooper", "Deborah Clark", "Stephanie Lewis", "Rebecca Robinson",
            "Sharon Walker", "Laura Hall", "Cynthia Young", "Kathleen Allen",
            "Amy King", "Shirley Scott", "Angela Green", "Helen Baker",
            "Anna Adams", "Brenda Nelson", "Pamela Hill", "Nicole Campbell",
            "Samantha Mitchell", "Katherine Carter", "Christine Phillips", "Debra Evans",
            "Rachel Turner", "Carolyn Parker", "Janet Collins", "Catherine Stewart",
            "Heather Morris", "Diane Murphy",
        ),
    ),
    "lab-technician": RoleIdentityConfig(
        sex="male",
        voice_id="george",
        names=_names(
            "Andrew Silva", "James Hayes", "Michael Daniels", "Robert Li", "William Chen", "Thomas Foster"
        ),
    ),
    "veterinarian": RoleIdentityConfig(
        sex="male",
        voice_id="charlie",
        names=_names(
            "Michael Torres", "James Kim", "William Romero", "Alexander Forsyth",
            "Christopher Hughes", "Daniel Bennett",
            honorific="Dr.",
        ),
        default_honorific="Dr.",
    ),
    NURSE_KEY: RoleIdentityConfig(
        sex="female",
        voice_id="charlotte",
        names=_names(
            "Sarah Jenkins", "Emily Wilson", "Jessica Taylor", "Ashley Brown", "Amanda Davis",
            "Jennifer Miller", "Elizabeth Moore", "Megan Anderson", "Rachel Thomas", "Lauren Jackson",
        ),
    ),
    "producer": RoleIdentityConfig(
        sex="male",
        voice_id="harry",
        names=_names(
            "Colin McDermott", "Richard Santos", "Edward Brooks", "Patrick Murphy", "Thomas O'Brien", "Martin Walsh"
        ),
    ),
    "veterinary-assistant": RoleIdentityConfig(
        sex="female",
        voice_id="lily",
        names=_names("Nina Zhao", "Sophie Patel", "Grace Lopez", "Hannah Ellis", "Lucy Foster", "Chloe Bennett"),
    ),
    "professor": RoleIdentityConfig(
        sex="female",
        voice_id="matilda",
        names=_names(
            "Evelyn Hart", "Victoria Chandra", "Miranda Kingsley", "Eleanor Dubois",
            "Catherine Ashworth", "Margaret Thornton",
            honorific="Dr.",
        ),
        default_honorific="Dr.",
    ),
}

FALLBACK_OWNER_FIRST_NAMES = ("Amelia", "Imogen", "Charlotte", "Elise", "Sofia", "Anya", "Clara", "Beatrice")
FALLBACK_OWNER_SURNAMES = ("Hughes", "Sutton", "Carroll", "Ellis", "Whitaker", "Kavanagh", "Abbott", "Baxter")

# Words that describe an animal or a role rather than a person's name
NON_NAME_VOCABULARY = frozenset(
    {
        "horse", "mare", "gelding", "stallion", "foal", "pony", "colt", "filly",
        "dog", "puppy", "bitch", "cat", "kitten", "cow", "heifer", "calf", "bull",
        "sheep", "ewe", "lamb", "goat", "pig", "sow", "alpaca", "llama",
        "owner", "client", "caretaker", "farmer", "producer", "guardian",
        "mr", "mrs", "ms", "miss", "dr", "the",
    }
)

OWNER_NAME_FIELDS = (
    "owner_name",
    "ownerName",
    "clientName",
    "client_name",
    "caretakerName",
    "caretaker_name",
    "guardianName",
    "guardian_name",
)

_BELONGS_TO_RE = re.compile(r"belongs to\s+([^,\n.]+)", re.IGNORECASE)
_ROLE_LINE_RE = re.compile(r"role\s*:\s*([^\n]+)", re.IGNORECASE)
_OWNER_LINE_RE = re.compile(r"owner\s*:\s*([^\n]+)", re.IGNORECASE)
_PATIENT_LINE_RE = re.compile(r"(?:horse|patient|animal)\s*:\s*([^\n]+)", re.IGNORECASE)
_ROLE_WORDS_RE = re.compile(r"owner|client", re.IGNORECASE)

ROLE_DISPLAY_LABELS = {
    OWNER_KEY: "Client (Owner)",
    NURSE_KEY: "Veterinary Nurse",
}


def build_pronouns(sex: PersonaSex) -> PersonaPronouns:
    if sex == "male":
        return PersonaPronouns(subject="he", object="him", possessive="his", determiner="his")
    if sex == "neutral":
        return PersonaPronouns(subject="they", object="them", possessive="theirs", determiner="their")
    return PersonaPronouns(subject="she", object="her", possessive="hers", determiner="her")


def fallback_owner_name(case_id: str) -> str:
    first = FALLBACK_OWNER_FIRST_NAMES[stable_hash(case_id) % len(FALLBACK_OWNER_FIRST_NAMES)]
    last = FALLBACK_OWNER_SURNAMES[stable_hash(f"{case_id}:owner") % len(FALLBACK_OWNER_SURNAMES)]
    return f"{first} {last}"


def sanitize_owner_name(raw: str, case_id: str) -> str:
    """
    Normalize a name found in case text into "First Last".

    Non-letters are stripped and animal or role words are dropped. A single
    remaining token gets a deterministic surname; nothing remaining yields a
    deterministic fallback name.
    """
    cleaned = re.sub(r"[^A-Za-z'\-\s]", " ", raw or "")
    parts = [p for p in cleaned.split() if p.lower().strip("'-") not in NON_NAME_VOCABULARY]
    if not parts:
        return fallback_owner_name(case_id)
    if len(parts) == 1:
        surname = FALLBACK_OWNER_SURNAMES[stable_hash(f"{case_id}:surname") % len(FALLBACK_OWNER_SURNAMES)]
        return f"{parts[0]} {surname}"
    return f"{parts[0]} {parts[-1]}"


def _coerce_record(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _search_owner_fields(record: dict[str, Any]) -> str | None:
    for key in OWNER_NAME_FIELDS:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    owner = _coerce_record(record.get("owner"))
    if owner:
        return _search_owner_fields(owner)
    return None


def _first_clause(text: str) -> str:
    return re.split(r"[,(]", text, maxsplit=1)[0].strip()


def discover_owner_name(case_data: dict[str, Any]) -> str | None:
    """
    Find an owner name stated by the case, without normalizing it.

    Explicit fields win over nested ``details`` records, which win over
    narrative patterns in the owner background.
    """
    direct = _search_owner_fields(case_data)
    if direct:
        return direct

    details = _coerce_record(case_data.get("details"))
    if details:
        nested = _search_owner_fields(details)
        if nested:
            return nested

    background = case_data.get("owner_background") or ""
    if not isinstance(background, str) or not background:
        return None

    match = _BELONGS_TO_RE.search(background)
    if match:
        return match.group(1).strip()

    for pattern in (_ROLE_LINE_RE, _OWNER_LINE_RE):
        match = pattern.search(background)
        if match:
            candidate = _first_clause(match.group(1))
            if candidate and not _ROLE_WORDS_RE.search(candidate):
                return candidate

    return None


def derive_patient_name(case_data: dict[str, Any]) -> str | None:
    name = case_data.get("patient_name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    background = case_data.get("owner_background") or ""
    match = _PATIENT_LINE_RE.search(background) if isinstance(background, str) else None
    if match:
        cleaned = match.group(1).split("(")[0].strip()
        if cleaned:
            return cleaned
    return None


def derive_owner_display_role(case_data: dict[str, Any]) -> str:
    """``Role:`` line of the owner background, else ``Owner (<patient>)``, else ``Client (Owner)``."""
    background = case_data.get("owner_background") or ""
    if isinstance(background, str):
        match = _ROLE_LINE_RE.search(background)
        if match and match.group(1).strip():
            return match.group(1).strip()

    patient = derive_patient_name(case_data)
    if patient:
        return f"Owner ({patient})"
    return ROLE_DISPLAY_LABELS[OWNER_KEY]


def display_role_for(role_key: str, case_data: dict[str, Any]) -> str:
    if role_key == OWNER_KEY:
        return derive_owner_display_role(case_data)
    return ROLE_DISPLAY_LABELS.get(role_key, role_key.replace("-", " ").title())


def seed_context_from_case(snapshot: CaseFieldsSnapshot) -> PersonaSeedContext:
    """Build a seed context from case fields, discovering the owner's name."""
    data = snapshot.model_dump()
    extra = snapshot.model_extra or {}
    owner_name = discover_owner_name(data)
    return PersonaSeedContext(
        owner_name=sanitize_owner_name(owner_name, snapshot.id or "") if owner_name else None,
        shared_persona_key=extra.get("sharedPersonaKey") or extra.get("shared_persona_key"),
        species=snapshot.species,
        patient_name=derive_patient_name(data),
        portrait_url=extra.get("portraitUrl") or extra.get("portrait_url"),
    )


@dataclass
class PersonaIdentityResolver:
    """Resolves and caches persona identities."""

    role_config: dict[str, RoleIdentityConfig] = field(default_factory=lambda: dict(ROLE_CONFIG))
    default_config: RoleIdentityConfig = DEFAULT_CONFIG
    cache_size: int = 2048

    def __post_init__(self):
        # Least recently used first; a miss recomputes the same identity
        self._cache: OrderedDict[tuple[str, str, str], PersonaIdentity] = OrderedDict()
        self._lock = threading.Lock()

    def resolve(
        self,
        case_id: str,
        role_key: str,
        context: PersonaSeedContext | None = None,
    ) -> PersonaIdentity:
        """
        Resolve the identity for a (case, role) pair.

        Args:
            case_id: Canonical case id
            role_key: Canonical persona key
            context: Optional seed facts (owner name, shared persona key)

        Returns:
            The same PersonaIdentity for the same inputs, every time
        """
        context = context or PersonaSeedContext()
        namespace = context.shared_persona_key or case_id
        cache_key = (namespace, role_key, context.owner_name or "")

        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._cache.move_to_end(cache_key)
        if cached is not None:
            return cached

        if role_key == OWNER_KEY and context.owner_name and not context.shared_persona_key:
            identity = self._owner_identity(context.owner_name, case_id, role_key)
        else:
            seed = context.shared_persona_key or f"{case_id}:{role_key}"
            identity = self._generated_identity(seed, role_key)

        with self._lock:
            identity = self._cache.setdefault(cache_key, identity)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        logger.debug(f"Resolved persona {identity.full_name} for {role_key}", extra={"case_id": case_id})
        return identity

    def _config_for(self, role_key: str) -> RoleIdentityConfig:
        return self.role_config.get(role_key, self.default_config)

    def _build(self, entry: NameEntry, config: RoleIdentityConfig, role_key: str) -> PersonaIdentity:
        honorific = entry.honorific or config.default_honorific
        full_name = f"{entry.first} {entry.last}"
        if honorific:
            full_name = f"{honorific} {full_name}"
        return PersonaIdentity(
            full_name=full_name,
            first_name=entry.first,
            last_name=entry.last,
            honorific=honorific,
            sex=config.sex,
            pronouns=build_pronouns(config.sex),
            voice_id=config.voice_id,
            role_key=role_key,
        )

    def _generated_identity(self, seed: str, role_key: str) -> PersonaIdentity:
        config = self._config_for(role_key)
        pool = config.names or self.default_config.names
        entry = pool[stable_hash(seed) % len(pool)]
        return self._build(entry, config, role_key)

    def _owner_identity(self, owner_name: str, case_id: str, role_key: str) -> PersonaIdentity:
        config = self._config_for(role_key)
        first, last = sanitize_owner_name(owner_name, case_id).split(" ", 1)
        return self._build(NameEntry(first=first, last=last), config, role_key)
