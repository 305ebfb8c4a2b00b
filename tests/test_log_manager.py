"""
日志管理：具名 logger、按天数/大小清理日志目录。
"""

import logging
import os
import time

from litgraph.log import LogManager, cleanup_logs, get_logger


def _write(path, size, age_days=0.0):
    path.write_bytes(b"x" * size)
    stamp = time.time() - age_days * 86400
    os.utime(path, (stamp, stamp))
    return path


def test_module_helpers_use_the_shared_manager():
    logger = get_logger("litgraph.tests.logging")
    assert logger is logging.getLogger("litgraph.tests.logging")
    assert logger.handlers
    report = cleanup_logs()
    assert set(report) == {"deleted_by_age", "deleted_by_size", "remaining_mb"}


def test_cleanup_removes_old_files_then_oldest_until_under_size(tmp_path):
    mb = 1024 * 1024
    _write(tmp_path / "2020-01-01_00-00-00.log", mb, age_days=40)
    _write(tmp_path / "2026-01-01_00-00-00.log", 2 * mb, age_days=3)
    _write(tmp_path / "2026-01-02_00-00-00.log", mb, age_days=2)
    _write(tmp_path / "notes.txt", 5 * mb, age_days=40)
    manager = LogManager({
        "log_dir": str(tmp_path), "max_age_days": 30, "max_size_mb": 2, "min_keep_mb": 0,
        "console_output": False, "file_output": False,
    })

    report = manager.cleanup()

    assert report["deleted_by_age"] == ["2020-01-01_00-00-00.log"]
    assert report["deleted_by_size"] == ["2026-01-01_00-00-00.log"]
    assert report["remaining_mb"] == 1.0
    assert sorted(p.name for p in tmp_path.iterdir()) == ["2026-01-02_00-00-00.log", "notes.txt"]


def test_cleanup_leaves_small_directories_alone(tmp_path):
    _write(tmp_path / "old.log", 1024, age_days=400)
    manager = LogManager({"log_dir": str(tmp_path), "min_keep_mb": 20, "console_output": False, "file_output": False})
    report = manager.cleanup()
    assert report["deleted_by_age"] == []
    assert (tmp_path / "old.log").exists()
