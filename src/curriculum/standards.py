"""
Curriculum standards reference.

Standards are immutable reference data supplied by the curriculum
definitions. StandardsCatalog is the in-process implementation of the
standards reference; a JSON file or a database table can feed it.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from pathlib import Path

from loguru import logger


@dataclass(frozen=True)
class Standard:
    """A curriculum objective, e.g. RL.3.1."""

    code: str
    domain: str
    grade: int
    cluster: str = ""
    text: str = ""
    dok: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class StandardsCatalog:
    """In-memory standards reference keyed by code, in curriculum order."""

    def __init__(self, standards: Iterable[Standard] = ()):
        self._by_code: dict[str, Standard] = {}
        for standard in standards:
            self._by_code[standard.code] = standard

    def __len__(self) -> int:
        return len(self._by_code)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code

    def get(self, code: str) -> Standard | None:
        return self._by_code.get(code)

    async def list_standards(self, grade: int | None = None) -> list[Standard]:
        """Standards for a grade (all grades when None)."""
        return [s for s in self._by_code.values() if grade is None or s.grade == grade]

    async def upsert_standards(self, standards: Iterable[Standard]) -> None:
        for standard in standards:
            self._by_code[standard.code] = standard

    def standards(self) -> list[Standard]:
        return list(self._by_code.values())

    def domains(self, grade: int | None = None) -> list[str]:
        """Distinct domains in first-seen order."""
        seen: dict[str, None] = {}
        for s in self._by_code.values():
            if grade is None or s.grade == grade:
                seen.setdefault(s.domain, None)
        return list(seen)

    @classmethod
    def from_json(cls, path: Path) -> StandardsCatalog:
        """
        Load a JSON list of {code, domain, grade, cluster, text, dok} objects.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: Not a JSON list of standards
            KeyError: A standard lacks code, domain or grade
        """
        if not path.exists():
            raise FileNotFoundError(f"Standards file not found: {path}")

        rows = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(rows, list):
            raise ValueError(f"{path.name} must hold a JSON list of standards")
        catalog = cls(
            Standard(
                code=row["code"],
                domain=row["domain"],
                grade=int(row["grade"]),
                cluster=row.get("cluster", ""),
                text=row.get("text", ""),
                dok=row.get("dok"),
            )
            for row in rows
        )
        logger.info(f"Loaded {len(catalog)} standards from {path.name}")
        return catalog
