"""Tests for deterministic persona identities and owner-name discovery."""

from casesim.core.personas import (
    FALLBACK_OWNER_SURNAMES,
    PersonaIdentityResolver,
    discover_owner_name,
    display_role_for,
    fallback_owner_name,
    sanitize_owner_name,
    seed_context_from_case,
    stable_hash,
)
from casesim.core.schemas_cases import CaseFieldsSnapshot
from casesim.core.schemas_personas import PersonaSeedContext


def test_stable_hash_matches_32_bit_string_hash():
    assert stable_hash("") == 0
    assert stable_hash("a") == 97
    assert stable_hash("hello") == 99162322


def test_same_inputs_same_identity():
    first = PersonaIdentityResolver().resolve("case-1", "veterinary-nurse")
    second = PersonaIdentityResolver().resolve("case-1", "veterinary-nurse")

    assert first == second
    assert first.voice_id == "charlotte"
    assert first.pronouns.subject == "she"


def test_identity_is_cached():
    resolver = PersonaIdentityResolver()

    assert resolver.resolve("case-1", "owner") is resolver.resolve("case-1", "owner")


def test_cache_evicts_least_recently_used_without_changing_identities():
    resolver = PersonaIdentityResolver(cache_size=2)
    first = resolver.resolve("case-1", "owner")
    resolver.resolve("case-2", "owner")
    resolver.resolve("case-1", "owner")
    resolver.resolve("case-3", "owner")

    assert len(resolver._cache) == 2
    assert ("case-2", "owner", "") not in resolver._cache
    assert resolver.resolve("case-2", "owner") == PersonaIdentityResolver().resolve("case-2", "owner")
    assert resolver.resolve("case-1", "owner") == first


def test_different_cases_usually_differ():
    resolver = PersonaIdentityResolver()
    names = {resolver.resolve(f"case-{n}", "owner").full_name for n in range(20)}

    assert len(names) > 1


def test_shared_persona_key_spans_cases():
    resolver = PersonaIdentityResolver()
    context = PersonaSeedContext(shared_persona_key="clinic-nurse")

    a = resolver.resolve("case-1", "veterinary-nurse", context)
    b = resolver.resolve("case-2", "veterinary-nurse", context)

    assert a.full_name == b.full_name


def test_honorific_roles():
    identity = PersonaIdentityResolver().resolve("case-1", "veterinarian")

    assert identity.full_name.startswith("Dr. ")
    assert identity.pronouns.subject == "he"


def test_unknown_role_uses_default_pool():
    identity = PersonaIdentityResolver().resolve("case-1", "farrier")

    assert identity.voice_id == "alice"
    assert identity.role_key == "farrier"


def test_owner_name_from_case_is_used():
    context = PersonaSeedContext(owner_name="Jane Doe")

    identity = PersonaIdentityResolver().resolve("case-1", "owner", context)

    assert identity.full_name == "Jane Doe"
    assert identity.first_name == "Jane"


def test_discover_owner_name_sources():
    assert discover_owner_name({"ownerName": "Ruth Ellis"}) == "Ruth Ellis"
    assert discover_owner_name({"details": '{"owner": {"clientName": "Tom Hale"}}'}) == "Tom Hale"
    assert discover_owner_name({"owner_background": "The mare belongs to Jane Doe, a trainer."}) == "Jane Doe"
    assert discover_owner_name({"owner_background": "Owner: Pat Kerr (breeder)"}) == "Pat Kerr"
    assert discover_owner_name({"owner_background": "Role: Horse owner (Catalina)"}) is None


def test_sanitize_owner_name():
    assert sanitize_owner_name("Mrs. Jane  Doe!", "case-1") == "Jane Doe"
    assert sanitize_owner_name("horse owner", "case-1") == fallback_owner_name("case-1")

    single = sanitize_owner_name("Jane", "case-1")
    first, last = single.split(" ")
    assert first == "Jane"
    assert last in FALLBACK_OWNER_SURNAMES


def test_seed_context_from_case():
    snapshot = CaseFieldsSnapshot.model_validate(
        {
            "id": "case-1",
            "ownerBackground": "Horse: Catalina (mare)\nThe horse belongs to John Smith.",
            "sharedPersonaKey": "pool-a",
        }
    )

    context = seed_context_from_case(snapshot)

    assert context.owner_name == "John Smith"
    assert context.shared_persona_key == "pool-a"
    assert context.patient_name == "Catalina"


def test_display_roles():
    assert display_role_for("owner", {"owner_background": "Role: Horse owner (Catalina)"}) == "Horse owner (Catalina)"
    assert display_role_for("owner", {"patient_name": "Bella"}) == "Owner (Bella)"
    assert display_role_for("owner", {}) == "Client (Owner)"
    assert display_role_for("veterinary-nurse", {}) == "Veterinary Nurse"
    assert display_role_for("lab-technician", {}) == "Lab Technician"
