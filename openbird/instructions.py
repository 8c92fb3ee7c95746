"""Prompt templates sent to the model.

Templates are looked up along a search path, first match wins:
  1. ``$OPENBIRD_INSTRUCTIONS_DIR`` when set
  2. personal overrides in ``~/.openbird/instructions/``
  3. packaged defaults in ``openbird/prompts/``
"""

from __future__ import annotations

import os
from pathlib import Path

AGENT_SYSTEM_PROMPT = "agent_system_prompt.md"
CHAT_SYSTEM_PROMPT = "chat_system_prompt.md"
FORMAT_RETRY_PROMPT = "format_retry_prompt.md"

PACKAGED_DIR = Path(__file__).resolve().parent / "prompts"
_PERSONAL_DIR = Path("~/.openbird/instructions").expanduser()


class InstructionLoader:
    """Resolve prompt templates by file name; contents are cached per loader."""

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        personal = Path(personal_dir).expanduser() if personal_dir is not None else _PERSONAL_DIR
        base = Path(base_dir).expanduser() if base_dir is not None else PACKAGED_DIR
        override = os.getenv("OPENBIRD_INSTRUCTIONS_DIR", "").strip()

        self.search_path: list[Path] = [personal.resolve(), base.resolve()]
        if override and base_dir is None:
            self.search_path.insert(0, Path(override).expanduser().resolve())
        self._cache: dict[str, str] = {}

    def find(self, name: str) -> Path | None:
        for directory in self.search_path:
            candidate = directory / name
            if candidate.is_file():
                return candidate
        return None

    def load(self, name: str) -> str:
        """Return the stripped template text.

        Raises:
            FileNotFoundError if no directory on the search path has it
        """
        if name in self._cache:
            return self._cache[name]
        path = self.find(name)
        if path is None:
            searched = ", ".join(str(d) for d in self.search_path)
            raise FileNotFoundError(f"Instruction template not found: {name} (searched {searched})")
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content
