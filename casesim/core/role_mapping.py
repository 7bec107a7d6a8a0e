"""Role label canonicalization and per-role stage keyword defaults.

Free-text stage roles ("Client", "Vet Nurse", "Lab technician") map to the
canonical persona keys that can answer in chat. The tables are plain data;
adding an alias needs no code change.
"""

import re

OWNER_KEY = "owner"
NURSE_KEY = "veterinary-nurse"
DEFAULT_PERSONA_KEY = NURSE_KEY

CHAT_PERSONA_KEYS: tuple[str, ...] = (OWNER_KEY, NURSE_KEY)

# Substring hints checked in order; the first canonical key with a hit wins
ROLE_ALIASES: dict[str, tuple[str, ...]] = {
    NURSE_KEY: ("nurse", "technician", "tech", "assistant", "staff"),
    OWNER_KEY: ("owner", "client", "producer", "farmer", "guardian", "caretaker"),
}

# Whole-word terms that count as a keyword hit when a stage defines none
DEFAULT_STAGE_KEYWORDS: dict[str, tuple[str, ...]] = {
    OWNER_KEY: (
        "appetite",
        "diet",
        "eating",
        "drinking",
        "vaccinated",
        "vaccination",
        "history",
        "noticed",
        "started",
        "days",
        "weeks",
        "medication",
        "weight",
    ),
    NURSE_KEY: (
        "temperature",
        "pulse",
        "heart rate",
        "respiratory",
        "vitals",
        "lungs",
        "auscultation",
        "cbc",
        "haematology",
        "hematology",
        "chemistry",
        "glucose",
        "urinalysis",
        "radiograph",
        "radiographs",
        "ultrasound",
        "ecg",
    ),
}


def normalize_role_key(value: str | None) -> str:
    """Lowercase, collapse separators to single hyphens."""
    text = (value or "").strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def classify_role_label(
    label: str | None,
    aliases: dict[str, tuple[str, ...]] = ROLE_ALIASES,
) -> str | None:
    """Canonical persona key for one label, or None when nothing matches."""
    if not label or not label.strip():
        return None

    lowered = label.lower()
    for key, hints in aliases.items():
        if any(hint in lowered for hint in hints):
            return key

    normalized = normalize_role_key(label)
    if normalized in aliases:
        return normalized
    return None


def canonicalize_role(
    stage_role: str | None,
    display_role: str | None = None,
    aliases: dict[str, tuple[str, ...]] = ROLE_ALIASES,
) -> str:
    """
    Map a stage role (falling back to a display label) to a chat persona key.

    Args:
        stage_role: Role text from the stage definition
        display_role: Optional display label shown to learners

    Returns:
        A key from CHAT_PERSONA_KEYS; DEFAULT_PERSONA_KEY when nothing matches
    """
    return (
        classify_role_label(stage_role, aliases)
        or classify_role_label(display_role, aliases)
        or DEFAULT_PERSONA_KEY
    )


def default_keywords_for(role_key: str) -> tuple[str, ...]:
    return DEFAULT_STAGE_KEYWORDS.get(role_key, ())


def count_keyword_hits(text: str, keywords: list[str] | tuple[str, ...]) -> int:
    """Distinct keywords present in text as whole words, case-insensitive."""
    if not text:
        return 0
    hits = 0
    for keyword in {k.strip().lower() for k in keywords if k and k.strip()}:
        pattern = r"\b" + r"\s+".join(re.escape(part) for part in keyword.split()) + r"\b"
        if re.search(pattern, text, re.IGNORECASE):
            hits += 1
    return hits
