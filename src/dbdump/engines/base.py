from __future__ import annotations

from pathlib import Path
from typing import List, Protocol


class EngineError(Exception):
    """Raised when an engine command fails; carries the tool's diagnostic text."""


class DatabaseEngine(Protocol):
    def dump(self, target: str, artifact_path: Path) -> None:
        ...

    def list_targets(self) -> List[str]:
        ...

    def restore(self, target: str, artifact_path: Path) -> None:
        ...
