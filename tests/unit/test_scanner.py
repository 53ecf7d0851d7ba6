"""
Unit tests for directory scanning and watching.
"""
import json
import threading
import pytest
from pathlib import Path

from bess_converter.conversion.models import DataType, FileEventType, GroupId, SystemId
from bess_converter.conversion import scanner as scanner_module
from bess_converter.conversion.scanner import FileScanner, PROJECT1_FILE_PATTERN, PROJECT2_FILE_PATTERN

WAIT_SECONDS = 10


class EventCollector:
    """Records watch events and signals when a given file shows up."""

    def __init__(self, wanted_name, wanted_type=FileEventType.ADD):
        self.wanted_name = wanted_name
        self.wanted_type = wanted_type
        self.events = []
        self.seen = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, event_type, path):
        with self._lock:
            self.events.append((event_type, Path(path)))
        if Path(path).name == self.wanted_name and event_type == self.wanted_type:
            self.seen.set()

    def names(self):
        with self._lock:
            return {path.name for _, path in self.events}


@pytest.fixture
def scanner():
    scanner = FileScanner()
    yield scanner
    scanner.stop_watching()


class TestFilePatterns:
    """Test the filename conventions."""

    @pytest.mark.parametrize("name", ["Bank01_20240105.csv", "Bank1.csv", "Bank12_x.csv"])
    def test_project1_matches(self, name):
        assert PROJECT1_FILE_PATTERN.match(name)

    @pytest.mark.parametrize("name", ["bank01.csv", "Bank01.txt", "BankA.csv", "Summary.csv"])
    def test_project1_rejects(self, name):
        assert PROJECT1_FILE_PATTERN.match(name) is None

    @pytest.mark.parametrize("name", [
        "vol1_2024_01_05_080000.csv",
        "soc_2024_01_05_1.csv",
        "temp12_2024_12_31_235959.csv",
        "state_2024_01_05_080000.csv",
    ])
    def test_project2_matches(self, name):
        assert PROJECT2_FILE_PATTERN.match(name)

    @pytest.mark.parametrize("name", ["vol1_20240105.csv", "current_2024_01_05_1.csv", "vol1_2024_01_05.csv"])
    def test_project2_rejects(self, name):
        assert PROJECT2_FILE_PATTERN.match(name) is None


class TestScanProjectOne:
    """Test FileScanner.scan_project_one_structure."""

    def test_scan_tree(self, scanner, project1_tree):
        structure = scanner.scan_project_one_structure(project1_tree)

        assert set(structure.systems) == set(SystemId)
        assert sorted(structure.systems[SystemId.SYSTEM_2]) == ["Bank01", "Bank02"]
        assert list(structure.systems[SystemId.SYSTEM_14]) == ["Bank01"]
        assert structure.systems[SystemId.SYSTEM_15] == {}
        assert structure.file_count() == 3

        record = structure.systems[SystemId.SYSTEM_14]["Bank01"]
        assert record.file_path.name == "Bank1_20240106.csv"
        assert record.file_size > 0

    def test_latest_file_wins(self, scanner, temp_dir):
        system_dir = temp_dir / "2#"
        system_dir.mkdir()
        (system_dir / "Bank01_20240105.csv").write_text("a")
        (system_dir / "Bank01_20240106.csv").write_text("b")

        structure = scanner.scan_project_one_structure(temp_dir)

        assert structure.systems[SystemId.SYSTEM_2]["Bank01"].file_path.name == "Bank01_20240106.csv"

    def test_two_of_three_systems_missing(self, scanner, temp_dir, project1_csv, project1_row_factory):
        project1_csv(temp_dir / "15#" / "Bank03_20240105.csv", [project1_row_factory("01/05/2024 08:00")])

        structure = scanner.scan_project_one_structure(temp_dir)

        assert structure.systems[SystemId.SYSTEM_2] == {}
        assert structure.systems[SystemId.SYSTEM_14] == {}
        assert list(structure.systems[SystemId.SYSTEM_15]) == ["Bank03"]
        assert structure.file_count() == 1

    def test_ignores_other_entries(self, scanner, temp_dir):
        system_dir = temp_dir / "2#"
        system_dir.mkdir()
        (system_dir / "notes.txt").write_text("x")
        (system_dir / "bank01.csv").write_text("x")
        (system_dir / "Bank03.csv").mkdir()
        (temp_dir / "99#").mkdir()
        (temp_dir / "99#" / "Bank01.csv").write_text("x")

        structure = scanner.scan_project_one_structure(temp_dir)

        assert structure.file_count() == 0

    def test_missing_base_path(self, scanner, temp_dir):
        structure = scanner.scan_project_one_structure(temp_dir / "missing")

        assert structure.systems == {}
        assert structure.file_count() == 0

    def test_iter_files_and_to_dict(self, scanner, project1_tree):
        structure = scanner.scan_project_one_structure(project1_tree)

        files = list(structure.iter_files())
        data = json.loads(json.dumps(structure.to_dict()))

        assert len(files) == 3
        assert set(data["2#"]) == {"Bank01", "Bank02"}
        assert data["15#"] == {}


class TestScanProjectTwo:
    """Test FileScanner.scan_project_two_structure."""

    def test_scan_tree(self, scanner, project2_tree):
        structure = scanner.scan_project_two_structure(project2_tree)

        assert set(structure.groups) == set(GroupId)
        group1 = structure.groups[GroupId.GROUP1]
        assert set(group1) == set(DataType)
        assert list(group1[DataType.VOLTAGE]) == ["2024-01-05"]
        assert group1[DataType.STATE]["2024-01-05"].file_path.name == "state_2024_01_05_080000.csv"
        assert structure.groups[GroupId.GROUP2] == {}
        assert structure.file_count() == 4

    def test_ignores_misnamed_files(self, scanner, temp_dir):
        type_dir = temp_dir / "group3" / "soc"
        type_dir.mkdir(parents=True)
        (type_dir / "soc1_20240105.csv").write_text("x")
        (type_dir / "soc1_2024_01_06_120000.csv").write_text("x")

        structure = scanner.scan_project_two_structure(temp_dir)

        assert list(structure.groups[GroupId.GROUP3][DataType.SOC]) == ["2024-01-06"]
        assert structure.groups[GroupId.GROUP3][DataType.VOLTAGE] == {}

    def test_missing_base_path(self, scanner, temp_dir):
        structure = scanner.scan_project_two_structure(temp_dir / "missing")

        assert structure.groups == {}


@pytest.mark.slow
class TestWatchPaths:
    """Test FileScanner.watch_paths and stop_watching."""

    def test_reports_new_files_only(self, scanner, temp_dir):
        system_dir = temp_dir / "2#"
        system_dir.mkdir()
        (system_dir / "Bank01_20240105.csv").write_text("existing")
        collector = EventCollector("Bank02_20240105.csv")

        scanner.watch_paths([temp_dir], collector)
        assert scanner.is_watching

        (system_dir / "Bank02_20240105.csv").write_text("new")

        assert collector.seen.wait(WAIT_SECONDS)
        assert "Bank01_20240105.csv" not in collector.names()

    def test_reports_unlink(self, scanner, temp_dir):
        target = temp_dir / "Bank01_20240105.csv"
        target.write_text("existing")
        collector = EventCollector("Bank01_20240105.csv", FileEventType.UNLINK)

        scanner.watch_paths([temp_dir], collector)
        target.unlink()

        assert collector.seen.wait(WAIT_SECONDS)

    def test_ignores_dotfiles_and_deep_files(self, scanner, temp_dir):
        deep_dir = temp_dir / "a" / "b" / "c" / "d"
        deep_dir.mkdir(parents=True)
        collector = EventCollector("marker.csv")

        scanner.watch_paths([temp_dir], collector)
        (temp_dir / ".hidden.csv").write_text("x")
        (deep_dir / "too_deep.csv").write_text("x")
        (temp_dir / "marker.csv").write_text("x")

        assert collector.seen.wait(WAIT_SECONDS)
        assert ".hidden.csv" not in collector.names()
        assert "too_deep.csv" not in collector.names()

    def test_callback_failure_does_not_stop_watch(self, scanner, temp_dir):
        collector = EventCollector("second.csv")

        def on_event(event_type, path):
            collector(event_type, path)
            if Path(path).name == "first.csv":
                raise RuntimeError("callback failed")

        scanner.watch_paths([temp_dir], on_event)
        (temp_dir / "first.csv").write_text("x")
        (temp_dir / "second.csv").write_text("x")

        assert collector.seen.wait(WAIT_SECONDS)

    def test_new_watch_replaces_previous(self, scanner, temp_dir):
        first_root = temp_dir / "first"
        second_root = temp_dir / "second"
        first_root.mkdir()
        second_root.mkdir()
        collector = EventCollector("b.csv")

        scanner.watch_paths([first_root], collector)
        scanner.watch_paths([second_root], collector)
        (first_root / "a.csv").write_text("x")
        (second_root / "b.csv").write_text("x")

        assert collector.seen.wait(WAIT_SECONDS)
        assert "a.csv" not in collector.names()

    def test_stop_is_idempotent(self, scanner, temp_dir):
        scanner.stop_watching()
        scanner.watch_paths([temp_dir], lambda event_type, path: None)
        scanner.stop_watching()
        scanner.stop_watching()

        assert not scanner.is_watching

    def test_concurrent_watch_calls_leave_one_observer(self, scanner, temp_dir, monkeypatch):
        started = []

        class RecordingObserver(scanner_module.Observer):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                started.append(self)

        monkeypatch.setattr(scanner_module, "Observer", RecordingObserver)

        for _ in range(5):
            barrier = threading.Barrier(4)

            def arm():
                barrier.wait()
                scanner.watch_paths([temp_dir], lambda event_type, path: None)

            threads = [threading.Thread(target=arm) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            assert scanner.is_watching

        scanner.stop_watching()

        assert len(started) == 20
        assert [observer for observer in started if observer.is_alive()] == []

    def test_callback_can_rearm_watch(self, scanner, temp_dir):
        first_root = temp_dir / "first"
        second_root = temp_dir / "second"
        first_root.mkdir()
        second_root.mkdir()
        collector = EventCollector("b.csv")
        rearmed = threading.Event()

        def on_first_event(event_type, path):
            if rearmed.is_set():
                return
            scanner.watch_paths([second_root], collector)
            rearmed.set()

        scanner.watch_paths([first_root], on_first_event)
        (first_root / "a.csv").write_text("x")
        assert rearmed.wait(WAIT_SECONDS)

        (second_root / "b.csv").write_text("x")

        assert collector.seen.wait(WAIT_SECONDS)
        assert scanner.is_watching
