"""
Recording Store

The search layer reads recordings through two calls:
- list_recordings() for index builds and sync
- get_recording(id) for enriching search results

JsonlRecordingStore serves them from a JSON-lines export, one recording
per line. Malformed lines are skipped with a warning so one bad entry
does not hide the rest of the journal.

Usage:
    from database.recording_store import JsonlRecordingStore

    store = JsonlRecordingStore("data/recordings.jsonl")
    for recording in store.list_recordings():
        print(recording.title)
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from core.errors import InvalidInputError
from search.models import Recording

logger = logging.getLogger(__name__)


class RecordingStore(Protocol):
    """Read access to recordings."""

    def list_recordings(self) -> List[Recording]:
        ...

    def get_recording(self, recording_id: str) -> Optional[Recording]:
        ...


class JsonlRecordingStore:
    """
    Recordings loaded from a JSONL file.

    The file is re-read when its modification time changes, so edits made
    by other processes show up on the next call.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._recordings: Dict[str, Recording] = {}
        self._loaded_mtime: Optional[float] = None
        self._lock = threading.Lock()

    def _refresh(self) -> None:
        with self._lock:
            if not self.path.exists():
                self._recordings = {}
                self._loaded_mtime = None
                return

            mtime = self.path.stat().st_mtime
            if mtime == self._loaded_mtime:
                return

            recordings: Dict[str, Recording] = {}
            with open(self.path, encoding='utf-8') as f:
                for line_num, line in enumerate(f, 1):
                    if not line.strip():
                        continue
                    try:
                        recording = Recording.from_dict(json.loads(line))
                    except (json.JSONDecodeError, InvalidInputError, TypeError, ValueError) as e:
                        logger.warning(f"Skipping malformed recording on line {line_num}: {e}")
                        continue
                    recordings[recording.id] = recording

            self._recordings = recordings
            self._loaded_mtime = mtime
            logger.debug(f"Loaded {len(recordings)} recordings from {self.path}")

    def list_recordings(self) -> List[Recording]:
        self._refresh()
        return list(self._recordings.values())

    def get_recording(self, recording_id: str) -> Optional[Recording]:
        self._refresh()
        return self._recordings.get(recording_id)

    def save_recording(self, recording: Recording) -> None:
        """Insert or replace a recording and rewrite the file."""
        self._refresh()
        with self._lock:
            self._recordings[recording.id] = recording
            self._write()

    def delete_recording(self, recording_id: str) -> bool:
        self._refresh()
        with self._lock:
            if self._recordings.pop(recording_id, None) is None:
                return False
            self._write()
            return True

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            for recording in self._recordings.values():
                f.write(json.dumps(recording.to_dict(), ensure_ascii=False) + '\n')
        tmp_path.replace(self.path)
        self._loaded_mtime = self.path.stat().st_mtime
