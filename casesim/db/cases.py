"""Case definitions and per-case stage overrides (table ``cases``)."""

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError
from supabase import Client

from casesim.core.errors import PersistenceFailure
from casesim.core.logging import get_logger
from casesim.core.schemas_cases import CaseDefinition, StageOverride, parse_stage_overrides

logger = get_logger(__name__)

TABLE = "cases"


def _looks_like_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except ValueError:
        return False


class CaseRepository(ABC):
    """Read access to cases plus the stage override map."""

    @abstractmethod
    def resolve_case_id(self, identifier: str) -> str:
        """Canonical id for an id or slug. Unknown identifiers resolve to themselves."""

    @abstractmethod
    def get_case(self, case_id: str) -> CaseDefinition | None:
        """Case by canonical id, or None."""

    @abstractmethod
    def get_stage_overrides(self, case_id: str) -> dict[str, StageOverride]:
        """Override map keyed by stringified stage index."""

    @abstractmethod
    def save_stage_overrides(
        self, case_id: str, overrides: dict[str, StageOverride]
    ) -> dict[str, StageOverride]:
        """Replace the override map for a case."""

    def find_case(self, identifier: str) -> CaseDefinition | None:
        return self.get_case(self.resolve_case_id(identifier))


class InMemoryCaseRepository(CaseRepository):
    def __init__(self, cases: list[CaseDefinition] | None = None):
        self._lock = threading.Lock()
        self._cases: dict[str, CaseDefinition] = {}
        self._overrides: dict[str, dict[str, StageOverride]] = {}
        for case in cases or []:
            self.add_case(case)

    def add_case(self, case: CaseDefinition) -> None:
        with self._lock:
            self._cases[case.id] = case

    def resolve_case_id(self, identifier: str) -> str:
        with self._lock:
            if identifier in self._cases:
                return identifier
            for case in self._cases.values():
                if case.slug and case.slug == identifier:
                    return case.id
        logger.warning(f"Case {identifier} not found, using identifier as-is")
        return identifier

    def get_case(self, case_id: str) -> CaseDefinition | None:
        with self._lock:
            return self._cases.get(case_id)

    def get_stage_overrides(self, case_id: str) -> dict[str, StageOverride]:
        with self._lock:
            return dict(self._overrides.get(case_id, {}))

    def save_stage_overrides(
        self, case_id: str, overrides: dict[str, StageOverride]
    ) -> dict[str, StageOverride]:
        with self._lock:
            self._overrides[case_id] = dict(overrides)
            return dict(overrides)


def _row_to_case(row: dict[str, Any]) -> CaseDefinition:
    data = {k: v for k, v in row.items() if k != "settings"}
    data["stages"] = row.get("stages") or []
    return CaseDefinition.model_validate(data)


class SupabaseCaseRepository(CaseRepository):
    def __init__(self, client: Client):
        self.client = client

    def _select_one(self, column: str, value: str) -> dict[str, Any] | None:
        try:
            response = self.client.table(TABLE).select("*").eq(column, value).limit(1).execute()
        except Exception as e:
            logger.error(f"Failed to look up case by {column}: {e}")
            raise PersistenceFailure(f"Failed to look up case: {e}") from e
        return response.data[0] if response.data else None

    def resolve_case_id(self, identifier: str) -> str:
        """
        Resolve an id or slug to the canonical case id.

        Args:
            identifier: Case id or slug

        Returns:
            Canonical id, or the identifier itself when no case matches
        """
        row = None
        if _looks_like_uuid(identifier):
            row = self._select_one("id", identifier)
        if row is None:
            row = self._select_one("slug", identifier)
        if row is None:
            logger.warning(f"Case {identifier} not found, using identifier as-is")
            return identifier
        return str(row["id"])

    def get_case(self, case_id: str) -> CaseDefinition | None:
        row = self._select_one("id", case_id) if _looks_like_uuid(case_id) else self._select_one("slug", case_id)
        if row is None:
            return None
        try:
            return _row_to_case(row)
        except ValidationError as e:
            logger.error(f"Case {case_id} failed validation: {e}", extra={"case_id": case_id})
            raise PersistenceFailure(f"Stored case {case_id} is invalid: {e}") from e

    def _settings(self, case_id: str) -> dict[str, Any]:
        try:
            response = self.client.table(TABLE).select("settings").eq("id", case_id).limit(1).execute()
        except Exception as e:
            raise PersistenceFailure(f"Failed to read case settings: {e}") from e
        if not response.data:
            return {}
        return response.data[0].get("settings") or {}

    def get_stage_overrides(self, case_id: str) -> dict[str, StageOverride]:
        try:
            return parse_stage_overrides(self._settings(case_id).get("stageOverrides"))
        except ValueError as e:
            logger.error(f"Case {case_id} has unreadable stage overrides: {e}", extra={"case_id": case_id})
            raise PersistenceFailure(f"Stored stage overrides for case {case_id} are invalid: {e}") from e

    def save_stage_overrides(
        self, case_id: str, overrides: dict[str, StageOverride]
    ) -> dict[str, StageOverride]:
        settings = self._settings(case_id)
        settings["stageOverrides"] = {
            key: value.model_dump(by_alias=True, exclude_none=True) for key, value in overrides.items()
        }
        try:
            self.client.table(TABLE).update({"settings": settings}).eq("id", case_id).execute()
        except Exception as e:
            logger.error(f"Failed to save stage overrides: {e}", extra={"case_id": case_id})
            raise PersistenceFailure(f"Failed to save stage overrides: {e}") from e

        logger.info(f"Saved {len(overrides)} stage overrides", extra={"case_id": case_id})
        return overrides
