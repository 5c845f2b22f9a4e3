import os
from pathlib import Path
from typing import Union

import structlog

from cf_reconcile.models import PersistedState

log = structlog.get_logger("cf-reconcile")

DEFAULT_STATE_DIR = ".cf-reconcile"


class FileStateStore:
    """Keeps one JSON state document per component under a directory."""

    def __init__(self, directory: Union[str, Path] = DEFAULT_STATE_DIR):
        self.directory = Path(directory)

    def path(self, component_id: str) -> Path:
        return self.directory / f"{component_id}.json"

    def load(self, component_id: str) -> PersistedState:
        path = self.path(component_id)
        if not path.exists():
            return PersistedState()
        log.debug("Loading state", path=str(path))
        return PersistedState.model_validate_json(path.read_text())

    def save(self, component_id: str, state: PersistedState) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path(component_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(state.model_dump_json(by_alias=True, exclude_none=True))
        os.replace(tmp_path, path)
        log.debug("Saved state", path=str(path))
