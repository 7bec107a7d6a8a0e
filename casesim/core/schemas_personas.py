"""Schemas for persona identities."""

from typing import Literal

from pydantic import Field

from casesim.core.schemas_base import CamelModel

PersonaSex = Literal["female", "male", "neutral"]


class PersonaPronouns(CamelModel):
    subject: str
    object: str
    possessive: str
    determiner: str


class PersonaIdentity(CamelModel):
    """Stable identity of a persona for one (case, role) pair."""

    full_name: str
    first_name: str
    last_name: str
    honorific: str | None = None
    sex: PersonaSex
    pronouns: PersonaPronouns
    voice_id: str
    role_key: str


class PersonaSeedContext(CamelModel):
    """Case facts that can shape a persona identity."""

    owner_name: str | None = Field(default=None, description="Owner name stated by the case")
    shared_persona_key: str | None = Field(
        default=None, description="Resolve against a shared persona pool instead of the case"
    )
    species: str | None = None
    patient_name: str | None = None
    portrait_url: str | None = None
