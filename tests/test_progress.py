import pytest

from riskscan.progress import ScanProgress


def test_entries_are_ordered_and_leveled():
    progress = ScanProgress()
    progress.phase("crawl", 20)
    progress.info("first")
    progress.warning("second", url="https://example.com/")
    progress.error("third", phase="dynamic")

    entries = progress.entries()
    assert [entry.sequence for entry in entries] == [0, 1, 2]
    assert [entry.level for entry in entries] == ["info", "warning", "error"]
    assert entries[0].phase == "crawl"
    assert entries[2].phase == "dynamic"
    assert entries[1].metadata == {"url": "https://example.com/"}
    assert progress.summary() == {"info": 1, "success": 0, "warning": 1, "error": 1, "total": 3}


def test_callback_receives_phase_and_log_payloads():
    received = []
    progress = ScanProgress(received.append, scan_id="abc")
    progress.phase("headers", 8)
    progress.success("done")
    assert received[0] == {"type": "phase", "phase": "headers", "progress": 8, "scan_id": "abc"}
    assert received[1]["type"] == "log"
    assert received[1]["level"] == "success"
    assert received[1]["message"] == "done"


def test_failing_callback_does_not_break_logging():
    def boom(payload):
        raise RuntimeError("listener gone")

    progress = ScanProgress(boom)
    progress.info("still recorded")
    assert len(progress.entries()) == 1


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError):
        ScanProgress().log("debug", "nope")
