"""Run state persistence with atomic writes."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.iosm_shared.constants import STATE_DIR, STATE_FILE
from src.iosm_shared.utils import atomic_write_json, load_json


@dataclass
class RunState:
    """Represents the progress of one orchestration run.

    Persisted to ``RUN_STATE.json`` using atomic writes.  The history log,
    not this file, is the record of completed cycles.
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    system_id: str = ""
    config_path: str = ""
    state_dir: str = STATE_DIR
    current_cycle: int = 0
    current_phase: str = ""
    completed_cycles: int = 0
    last_index: float | None = None
    status: str = "pending"
    stop_reason: str = ""
    error: str = ""
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    updated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    interrupted: bool = False
    interrupt_reason: str = ""
    schema_version: int = 1

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise the state to a plain dictionary."""
        from dataclasses import asdict

        return asdict(self)

    def save(self, directory: Path | str | None = None) -> Path:
        """Persist state to disk using atomic writes.

        Args:
            directory: Target directory.  Defaults to ``state_dir``.

        Returns:
            The path the state was written to.
        """
        directory = Path(directory) if directory else Path(self.state_dir)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / STATE_FILE
        self.updated_at = datetime.now(timezone.utc).isoformat()
        atomic_write_json(target, self.to_dict())
        return target

    @classmethod
    def load(cls, directory: Path | str | None = None) -> RunState | None:
        """Load state from a JSON file.

        Args:
            directory: Source directory.  Defaults to the standard state
                       directory location.

        Returns:
            Reconstructed ``RunState``, or ``None`` if the file is
            missing or invalid.
        """
        directory = Path(directory) if directory else Path(STATE_DIR)
        data = load_json(directory / STATE_FILE)
        if data is None:
            return None
        # Filter to only known fields
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)
