"""State file models for tracking reconciled resources."""

import contextlib
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class ResourceState(BaseModel):
    """Last known actual state of a single resource.

    Attributes:
        id: Provider identifier of the resource
        kind: Adapter registry key (e.g., "compute_instance")
        attributes: Last known attribute values
        status: Raw provider status, including transitional values
            (e.g., "STAGING"); empty when never observed
        last_applied_at: When a reconciliation last wrote this record
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    kind: str = "compute_instance"
    attributes: dict[str, Any] = Field(default_factory=dict)
    status: str = ""
    last_applied_at: datetime | None = None

    @classmethod
    def empty(cls, resource_id: str, kind: str = "compute_instance") -> Self:
        """Default state for a resource with no persisted record."""
        return cls(id=resource_id, kind=kind)


class StateFile(BaseModel):
    """Versioned on-disk mapping of resource ids to their last known state.

    Attributes:
        version: State file format version
        serial: Incremented on every write
        lineage: Stable identifier of this state file's history
        resources: Mapping of resource ids to states
    """

    model_config = ConfigDict(extra="ignore")

    version: int = STATE_VERSION
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceState] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "StateFile":
        """Load state from a JSON file. Unknown fields are ignored."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        if state.version > STATE_VERSION:
            logger.warning(
                "State file %s has version %d, newer than supported version %d",
                path,
                state.version,
                STATE_VERSION,
            )
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path) -> "StateFile":
        """Load existing state or create a new one."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            logger.debug("No state file at %s, starting empty", path)
            return cls()
