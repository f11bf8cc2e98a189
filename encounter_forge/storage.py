"""JSON file storage for generated encounters.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM: reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      config.json             ← generation settings (see encounter_forge.config)
      encounters/
        {id}.json             ← one StoredEncounter per file

Ids are slugs of the encounter title ("Ambush at the Ford" →
"ambush-at-the-ford"), suffixed "-2", "-3", … on collision.
"""

from __future__ import annotations

import json
import re
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from encounter_forge.models import StoredEncounter

_TITLE_RE = re.compile(r"^#[ \t]+(.+?)[ \t]*$", re.MULTILINE)


def slugify(title: str) -> str:
    """Convert a title to a filesystem-safe slug.

    "The Cursed Tavern" → "the-cursed-tavern"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)  # strip apostrophes/quotes before hyphenation
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


def extract_title(markdown_text: str) -> str:
    """First level-1 heading of the text, without emoji decoration."""
    match = _TITLE_RE.search(markdown_text or "")
    if not match:
        return "Untitled Encounter"
    title = "".join(ch for ch in match.group(1) if ch.isalnum() or ch in " '-,:&").strip()
    return title or "Untitled Encounter"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._enc_root = base_path / "encounters"
        self._enc_root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _enc_file(self, encounter_id: str) -> Path:
        return self._enc_root / f"{encounter_id}.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    def _unique_id(self, title: str) -> str:
        base = slugify(title)
        candidate = base
        n = 2
        while self._enc_file(candidate).exists():
            candidate = f"{base}-{n}"
            n += 1
        return candidate

    # ------------------------------------------------------------------
    # Encounters
    # ------------------------------------------------------------------

    def create_encounter(self, fields: dict[str, Any]) -> StoredEncounter:
        """Store a new encounter. Title defaults to the text's first heading."""
        title = fields.get("title") or extract_title(fields.get("encounter_text", ""))
        now = _now()
        encounter = StoredEncounter.model_validate({
            **fields,
            "id": self._unique_id(title),
            "title": title,
            "created_at": now,
            "updated_at": now,
        })
        self._write_json(self._enc_file(encounter.id), encounter.model_dump(mode="json"))
        return encounter

    def save_encounter(self, encounter: StoredEncounter) -> StoredEncounter:
        """Upsert by id, refreshing updated_at."""
        now = _now()
        encounter = encounter.model_copy(update={
            "created_at": encounter.created_at or now,
            "updated_at": now,
        })
        self._write_json(self._enc_file(encounter.id), encounter.model_dump(mode="json"))
        return encounter

    def get_encounter(self, encounter_id: str) -> StoredEncounter | None:
        path = self._enc_file(encounter_id)
        if not path.is_file():
            return None
        return StoredEncounter.model_validate(self._read_json(path))

    def list_encounters(self, tag: str | None = None) -> list[StoredEncounter]:
        """All encounters, newest first, optionally filtered by tag."""
        encounters = [
            StoredEncounter.model_validate(self._read_json(p))
            for p in self._enc_root.glob("*.json")
        ]
        if tag:
            wanted = tag.lower()
            encounters = [e for e in encounters if wanted in (t.lower() for t in e.tags)]
        return sorted(encounters, key=lambda e: e.created_at, reverse=True)

    def update_encounter(self, encounter_id: str, fields: dict[str, Any]) -> StoredEncounter | None:
        existing = self.get_encounter(encounter_id)
        if existing is None:
            return None
        protected = {"id", "created_at", "updated_at"}
        merged = existing.model_dump()
        merged.update({k: v for k, v in fields.items() if k not in protected})
        return self.save_encounter(StoredEncounter.model_validate(merged))

    def delete_encounter(self, encounter_id: str) -> bool:
        path = self._enc_file(encounter_id)
        if not path.is_file():
            return False
        path.unlink()
        return True
