from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import StorageFailure
from .types import ExecutionRequest, Workspace

if TYPE_CHECKING:
    from ..languages import LanguageProfile

logger = logging.getLogger(__name__)

RUN_DIR_PREFIX = "run_"


class WorkspacePreparer:
    """Materialize submitted source as a runnable file on scratch storage.

    Every request gets its own `run_<id>` directory under the scratch root,
    so concurrent submissions in the same language never share a file.

    Example:
        ```python
        preparer = WorkspacePreparer("/tmp/classroom-runner")
        ws = preparer.prepare(ExecutionRequest('print("hi")', "python"), profile)
        ```
    """

    def __init__(self, scratch_root: str | Path) -> None:
        self._root = Path(scratch_root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def prepare(self, request: ExecutionRequest, profile: LanguageProfile) -> Workspace:
        """Write the request's source verbatim to `<run dir>/Main.<ext>`.

        Example:
            ```python
            ws = preparer.prepare(request, DEFAULT_REGISTRY.lookup("python"))
            ```
        """
        directory = self._root / f"{RUN_DIR_PREFIX}{uuid.uuid4().hex}"
        file_path = directory / profile.filename
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            directory.mkdir()
            with file_path.open("w", encoding="utf-8", newline="") as handle:
                handle.write(request.source_text)
        except OSError as exc:
            logger.error("Failed to write workspace %s: %s", directory, exc)
            raise StorageFailure(f"Could not write {file_path}: {exc}") from exc
        logger.debug("Prepared workspace %s", file_path)
        return Workspace(directory=directory.resolve(), file_path=file_path.resolve())

    def release(self, workspace: Workspace) -> None:
        """Delete a workspace once its run has completed.

        Example:
            ```python
            preparer.release(ws)
            ```
        """
        try:
            shutil.rmtree(workspace.directory)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Could not remove workspace %s: %s", workspace.directory, exc)

    def purge(self) -> int:
        """Remove leftover run directories and return how many were deleted.

        Example:
            ```python
            removed = preparer.purge()
            ```
        """
        if not self._root.is_dir():
            return 0
        removed = 0
        for entry in self._root.iterdir():
            if not entry.is_dir() or not entry.name.startswith(RUN_DIR_PREFIX):
                continue
            try:
                shutil.rmtree(entry)
            except OSError as exc:
                logger.warning("Could not remove workspace %s: %s", entry, exc)
                continue
            removed += 1
        return removed
