"""System prompt composition for persona replies.

The system prompt is built from three blocks in a fixed order: persona
directives, the stage base prompt, then retrieved case knowledge.
"""

from casesim.core.role_mapping import NURSE_KEY, OWNER_KEY
from casesim.core.schemas_knowledge import RankedChunk
from casesim.core.schemas_personas import PersonaIdentity

APOLOGY_MESSAGE = (
    "I'm sorry, I'm having trouble responding right now. "
    "Please try sending your message again in a moment."
)

ROLE_DIRECTIVES: dict[str, str] = {
    OWNER_KEY: (
        "You are roleplaying as the owner or caretaker in a veterinary consultation. "
        "Stay in character using the case background and only reveal information that "
        "the student explicitly asks for. Speak as a layperson; do not offer diagnoses "
        "or medical terminology unless the student has used it first."
    ),
    NURSE_KEY: (
        "You are a veterinary nurse assisting with the examination and diagnostics. "
        "Provide ONLY the findings or results the student specifically requests. "
        "If a test was not performed or is pending, say so. Do not interpret results "
        "or suggest a diagnosis."
    ),
}

DEFAULT_DIRECTIVE = (
    "You are a member of the veterinary team in a teaching simulation. "
    "Answer only what the student asks, and stay consistent with the case details."
)

KNOWLEDGE_HEADER = "Case reference information (use only when relevant to the question):"


def persona_directives(identity: PersonaIdentity, display_role: str, species: str | None = None) -> str:
    """Identity line plus role behaviour directives."""
    pronouns = identity.pronouns
    lines = [
        f"Your name is {identity.full_name}. You appear to the student as: {display_role}.",
        f"Refer to yourself with {pronouns.subject}/{pronouns.object} pronouns if needed.",
        ROLE_DIRECTIVES.get(identity.role_key, DEFAULT_DIRECTIVE),
    ]
    if species:
        lines.append(f"The patient is a {species.strip().lower()}.")
    lines.append("Never mention that you are an AI or that this is a simulation.")
    return "\n".join(lines)


def build_knowledge_context(chunks: list[RankedChunk], max_chars: int) -> str:
    """
    Concatenate retrieved chunks into one block of at most ``max_chars`` characters.

    Whole chunks are added in rank order; the first chunk that does not fit
    is truncated and the rest dropped.
    """
    if not chunks or max_chars <= 0:
        return ""

    parts: list[str] = []
    used = 0
    for chunk in chunks:
        text = chunk.content.strip()
        if not text:
            continue
        separator = 2 if parts else 0
        remaining = max_chars - used - separator
        if remaining <= 0:
            break
        if len(text) > remaining:
            parts.append(text[:remaining])
            break
        parts.append(text)
        used += separator + len(text)

    return "\n\n".join(parts)


def compose_system_prompt(directives: str, base_prompt: str, knowledge: str) -> str:
    blocks = [directives.strip()]
    if base_prompt and base_prompt.strip():
        blocks.append(base_prompt.strip())
    if knowledge:
        blocks.append(f"{KNOWLEDGE_HEADER}\n{knowledge}")
    return "\n\n".join(blocks)
