"""Recording catalog for SleepTalk Recorder.

Keeps the flat, newest-first list of finished recordings in the output
directory.  Any container soundfile can read is listed, so recordings made
with a different ``--format`` stay visible; the JSONL event log is not.
"""

import threading
from pathlib import Path
from typing import FrozenSet, List, Optional

import soundfile as sf
from loguru import logger

from .capture import ArtifactRef
from .config import RECORDINGS_DIR


def readable_extensions() -> FrozenSet[str]:
    """File extensions of every container soundfile can read."""
    return frozenset(name.lower() for name in sf.available_formats())


class RecordingCatalog:
    """Persists and enumerates finished recordings."""

    def __init__(self, storage_dir: str = RECORDINGS_DIR, file_extension: Optional[str] = None) -> None:
        """Initialize the catalog and scan *storage_dir*.

        Args:
            storage_dir: Directory holding the recordings
            file_extension: Only list recordings with this extension; every
                readable audio format when ``None``
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        if file_extension:
            self._extensions = frozenset([file_extension.lower().lstrip('.')])
        else:
            self._extensions = readable_extensions()
        self._lock = threading.Lock()
        self._artifacts: List[ArtifactRef] = []
        self.reload()

    def reload(self) -> None:
        """Rescan the storage directory."""
        artifacts = []
        for audio_file in self.storage_dir.iterdir():
            if not audio_file.is_file() or audio_file.suffix.lower().lstrip('.') not in self._extensions:
                continue
            try:
                artifacts.append(ArtifactRef.from_path(audio_file))
            except OSError as e:
                logger.error(f'Error reading recording {audio_file}: {e}')
        with self._lock:
            self._artifacts = self._sorted(artifacts)

    @staticmethod
    def _sorted(artifacts: List[ArtifactRef]) -> List[ArtifactRef]:
        return sorted(
            artifacts,
            key=lambda a: (a.created_at.timestamp() if a.created_at else 0.0, a.name),
            reverse=True,
        )

    def add(self, artifact: ArtifactRef) -> None:
        """Register a finalized recording."""
        with self._lock:
            if artifact in self._artifacts:
                return
            self._artifacts = self._sorted(self._artifacts + [artifact])
        logger.info(f'Catalogued recording: {artifact.name}')

    def list(self) -> List[ArtifactRef]:
        """Return all recordings, newest first."""
        with self._lock:
            return list(self._artifacts)

    def find(self, name: str) -> Optional[ArtifactRef]:
        """Look a recording up by file name (with or without extension)."""
        for artifact in self.list():
            if artifact.name == name or artifact.path.stem == name:
                return artifact
        return None

    def remove(self, artifact: ArtifactRef) -> bool:
        """Delete a recording file and drop it from the catalog.

        Returns:
            True if the file was deleted, False otherwise
        """
        with self._lock:
            self._artifacts = [a for a in self._artifacts if a != artifact]
        try:
            artifact.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f'Error deleting recording {artifact.name}: {e}')
            return False
        logger.info(f'Deleted recording: {artifact.name}')
        return True

    def remove_all(self) -> int:
        """Delete every catalogued recording.

        Returns:
            Number of files deleted
        """
        return sum(1 for artifact in self.list() if self.remove(artifact))

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)
