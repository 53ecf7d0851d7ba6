"""
Directory Scanner for Battery CSV Exports.

This module discovers CSV files laid out in the two fixed export conventions
and watches directories for changes:

    Project1: <base>/<system>/BankNN_YYYYMMDD.csv          systems: 2#, 14#, 15#
    Project2: <base>/<group>/<data type>/<type>N_YYYY_MM_DD_HHMMSS.csv

Missing or unreadable directories are logged and reported as empty; a scan
never raises.
"""

import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from bess_converter.core.logging import LoggerMixin
from bess_converter.utils.helpers import format_bank_id
from .models import (
    DataType, FileEventType, FileRecord, GroupId, Project1FileStructure,
    Project2FileStructure, SystemId
)


PROJECT1_FILE_PATTERN = re.compile(r"^Bank(\d+).*\.csv$")
PROJECT2_FILE_PATTERN = re.compile(r"^(soc|state|temp|vol)\d*_(\d{4})_(\d{2})_(\d{2})_\d+\.csv$")

# Directories below a watched root that still produce events
WATCH_DEPTH = 3

FileEventCallback = Callable[[FileEventType, Path], None]


class _WatchSession:
    """Observer, dispatcher and callback of one watch_paths call."""

    def __init__(self, callback: FileEventCallback):
        self.callback = callback
        self.observer = Observer()
        self.dispatcher = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scanner_events")
        self.ready = threading.Event()


class _ChangeEventHandler(FileSystemEventHandler):
    """Translates watchdog events into FileEventType callbacks."""

    def __init__(self, scanner: "FileScanner", session: "_WatchSession", root: Path):
        super().__init__()
        self.scanner = scanner
        self.session = session
        self.root = root

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self.scanner._emit(self.session, FileEventType.ADD, self.root, event.src_path)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self.scanner._emit(self.session, FileEventType.CHANGE, self.root, event.src_path)

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory:
            self.scanner._emit(self.session, FileEventType.UNLINK, self.root, event.src_path)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self.scanner._emit(self.session, FileEventType.UNLINK, self.root, event.src_path)
            self.scanner._emit(self.session, FileEventType.ADD, self.root, event.dest_path)


class FileScanner(LoggerMixin):
    """Scans the Project1/Project2 directory conventions and watches for changes."""

    def __init__(self):
        self._session: Optional[_WatchSession] = None
        self._watch_lock = threading.Lock()
        self._callback_state = threading.local()

    # ------------------------------------------------------------------
    # Project1
    # ------------------------------------------------------------------

    def scan_project_one_structure(self, base_path: Union[str, Path]) -> Project1FileStructure:
        """
        Scan a Project1 export tree.

        Every known system gets an entry; a missing system directory maps to
        an empty bank dictionary.

        Args:
            base_path: Directory containing the system sub-directories

        Returns:
            Structure of system id -> bank id -> file record
        """
        base_path = Path(base_path)
        structure = Project1FileStructure()

        if not self._is_readable_dir(base_path):
            self.logger.warning(f"Project1 base path not readable: {base_path}")
            return structure

        for system_id in SystemId:
            system_dir = base_path / system_id.value
            if not system_dir.is_dir():
                self.logger.warning(f"System directory not found: {system_dir}")
                structure.systems[system_id] = {}
                continue
            structure.systems[system_id] = self._scan_bank_files(system_dir)

        self.logger.info(f"Project1 scan of {base_path} found {structure.file_count()} files")
        return structure

    def _scan_bank_files(self, system_dir: Path) -> Dict[str, FileRecord]:
        banks: Dict[str, FileRecord] = {}

        # Sorted so that the newest date stamp wins when a bank has several files
        for entry in self._list_entries(system_dir):
            match = PROJECT1_FILE_PATTERN.match(entry.name)
            if not match or not entry.is_file():
                continue

            record = self._stat(entry)
            if record is None:
                continue

            bank_id = format_bank_id(match.group(1))
            if bank_id in banks:
                self.logger.debug(f"{bank_id} in {system_dir} superseded by {entry.name}")
            banks[bank_id] = record

        return banks

    # ------------------------------------------------------------------
    # Project2
    # ------------------------------------------------------------------

    def scan_project_two_structure(self, base_path: Union[str, Path]) -> Project2FileStructure:
        """
        Scan a Project2 export tree.

        Args:
            base_path: Directory containing the group sub-directories

        Returns:
            Structure of group id -> data type -> 'YYYY-MM-DD' -> file record
        """
        base_path = Path(base_path)
        structure = Project2FileStructure()

        if not self._is_readable_dir(base_path):
            self.logger.warning(f"Project2 base path not readable: {base_path}")
            return structure

        for group_id in GroupId:
            group_dir = base_path / group_id.value
            if not group_dir.is_dir():
                self.logger.warning(f"Group directory not found: {group_dir}")
                structure.groups[group_id] = {}
                continue

            data_types: Dict[DataType, Dict[str, FileRecord]] = {}
            for data_type in DataType:
                type_dir = group_dir / data_type.value
                if not type_dir.is_dir():
                    self.logger.debug(f"Data type directory not found: {type_dir}")
                    data_types[data_type] = {}
                    continue
                data_types[data_type] = self._scan_dated_files(type_dir)
            structure.groups[group_id] = data_types

        self.logger.info(f"Project2 scan of {base_path} found {structure.file_count()} files")
        return structure

    def _scan_dated_files(self, type_dir: Path) -> Dict[str, FileRecord]:
        files: Dict[str, FileRecord] = {}

        for entry in self._list_entries(type_dir):
            match = PROJECT2_FILE_PATTERN.match(entry.name)
            if not match or not entry.is_file():
                continue

            record = self._stat(entry)
            if record is None:
                continue

            _, year, month, day = match.groups()
            files[f"{year}-{month}-{day}"] = record

        return files

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _is_readable_dir(self, path: Path) -> bool:
        if not path.is_dir():
            return False
        try:
            next(path.iterdir(), None)
        except (PermissionError, OSError) as e:
            self.logger.error(f"Cannot read directory {path}: {e}")
            return False
        return True

    def _list_entries(self, directory: Path) -> List[Path]:
        try:
            return sorted(directory.iterdir(), key=lambda p: p.name)
        except (PermissionError, OSError) as e:
            self.logger.error(f"Cannot list directory {directory}: {e}")
            return []

    def _stat(self, path: Path) -> Optional[FileRecord]:
        try:
            return FileRecord.from_path(path)
        except OSError as e:
            self.logger.warning(f"Cannot stat {path}: {e}")
            return None

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    @property
    def is_watching(self) -> bool:
        return self._session is not None

    def watch_paths(self, paths: Iterable[Union[str, Path]], on_event: FileEventCallback) -> None:
        """
        Watch paths for add/change/unlink events.

        Any previous watch is replaced and stopped. Files already present when the
        watch starts do not produce events; callbacks run on a dedicated
        background thread, never on the observer thread. May be called from
        inside a watch callback to re-arm the watch.

        Args:
            paths: Directories to watch
            on_event: Called with (event type, file path)
        """
        roots = [Path(p) for p in paths]

        with self._watch_lock:
            session = _WatchSession(on_event)
            scheduled = 0
            for root in roots:
                if not root.is_dir():
                    self.logger.warning(f"Watch path does not exist: {root}")
                    continue
                session.observer.schedule(_ChangeEventHandler(self, session, root), str(root), recursive=True)
                scheduled += 1

            session.observer.start()
            previous, self._session = self._session, session
            existing = sum(self._count_existing(root) for root in roots if root.is_dir())
            session.ready.set()

        # Every replaced session is stopped by the call that replaced it
        if previous is not None:
            self._stop_session(previous)
        self.logger.info(f"Watching {scheduled} path(s), {existing} existing files ignored")

    def stop_watching(self) -> None:
        """Stop the active watch, if any, and wait for its threads to exit."""
        with self._watch_lock:
            session, self._session = self._session, None

        if session is None:
            return
        self._stop_session(session)
        self.logger.info("File watching stopped")

    def _stop_session(self, session: "_WatchSession") -> None:
        session.ready.clear()
        session.observer.stop()
        session.observer.join()
        # A callback re-arming the watch runs on this session's dispatcher
        in_callback = getattr(self._callback_state, "session", None) is session
        session.dispatcher.shutdown(wait=not in_callback)

    def _count_existing(self, root: Path) -> int:
        count = 0
        for dirpath, dirnames, filenames in os.walk(root):
            rel_depth = len(Path(dirpath).relative_to(root).parts)
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            if rel_depth >= WATCH_DEPTH:
                dirnames[:] = []
            count += sum(1 for name in filenames if not name.startswith("."))
        return count

    def _emit(self, session: "_WatchSession", event_type: FileEventType, root: Path, raw_path) -> None:
        if not session.ready.is_set() or session is not self._session:
            return

        path = Path(os.fsdecode(raw_path))
        try:
            relative = path.relative_to(root)
        except ValueError:
            return

        if any(part.startswith(".") for part in relative.parts):
            return
        if len(relative.parts) - 1 > WATCH_DEPTH:
            return

        try:
            session.dispatcher.submit(self._invoke_callback, session, event_type, path)
        except RuntimeError:
            # Dispatcher shut down between the check and the submit
            self.logger.debug(f"Dropped {event_type.value} event for {path}: watch stopping")

    def _invoke_callback(self, session: "_WatchSession", event_type: FileEventType, path: Path) -> None:
        self._callback_state.session = session
        try:
            session.callback(event_type, path)
        except Exception as e:
            self.logger.error(f"Watch callback failed for {event_type.value} {path}: {e}")
        finally:
            self._callback_state.session = None
