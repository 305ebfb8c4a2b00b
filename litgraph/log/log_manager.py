"""
日志管理：分级输出、每次运行一个日志文件、按大小/天数清理。

配置取自 litgraph_config.json 的 logging 段:
    level / console_output / file_output / log_dir / max_size_mb / max_age_days / min_keep_mb
"""
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

DEFAULT_LEVEL = "INFO"
DEFAULT_MAX_SIZE_MB = 100
DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_MIN_KEEP_MB = 20
LOG_DIR_NAME = "litgraph"
LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)s | %(name)s | %(message)s"

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class LogManager:
    """
    具名 logger 工厂：控制台 + 运行文件双输出。
    文件名按首次写日志的时间命名（YYYY-mm-dd_HH-MM-SS.log），同一进程复用。
    """

    def __init__(self, config: dict[str, Any] | None = None):
        config = config or {}
        log_dir = config.get("log_dir")
        self.log_dir = Path(log_dir) if log_dir else _PROJECT_ROOT / "logs" / LOG_DIR_NAME
        self.max_size_mb = int(config.get("max_size_mb", DEFAULT_MAX_SIZE_MB))
        self.max_age_days = int(config.get("max_age_days", DEFAULT_MAX_AGE_DAYS))
        self.min_keep_mb = int(config.get("min_keep_mb", DEFAULT_MIN_KEEP_MB))
        self.console_output = bool(config.get("console_output", True))
        self.file_output = bool(config.get("file_output", True))
        self.level = getattr(logging, str(config.get("level") or DEFAULT_LEVEL).upper(), logging.INFO)

        self._run_log_path: Path | None = None
        self._loggers: list[logging.Logger] = []
        self._formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def _run_file(self) -> Path:
        if self._run_log_path is None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._run_log_path = self.log_dir / datetime.now().strftime("%Y-%m-%d_%H-%M-%S.log")
        return self._run_log_path

    def get_logger(self, name: str) -> logging.Logger:
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger

        logger.setLevel(self.level)
        logger.propagate = False

        if self.console_output:
            ch = logging.StreamHandler()
            ch.setLevel(self.level)
            ch.setFormatter(self._formatter)
            logger.addHandler(ch)

        if self.file_output:
            fh = logging.FileHandler(self._run_file(), encoding="utf-8")
            fh.setLevel(self.level)
            fh.setFormatter(self._formatter)
            logger.addHandler(fh)

        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
        self._loggers.append(logger)
        return logger

    def reconfigure(self, config: dict[str, Any]) -> None:
        """按新配置重建已发放 logger 的 handler（入口脚本解析完配置后调用）。"""
        loggers = list(self._loggers)
        self.shutdown()
        self.__init__(config)
        for logger in loggers:
            self.get_logger(logger.name)

    def shutdown(self) -> None:
        for logger in self._loggers:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
        self._loggers.clear()

    def cleanup(self) -> dict[str, Any]:
        """
        清理日志目录：
        - 总量低于 min_keep_mb 不动；
        - 先删超过 max_age_days 的，再从最旧开始删到不超过 max_size_mb。
        """
        report: dict[str, Any] = {"deleted_by_age": [], "deleted_by_size": [], "remaining_mb": 0.0}
        if not self.log_dir.exists():
            return report

        files = sorted(
            (f for f in self.log_dir.iterdir() if f.is_file() and f.suffix == ".log"),
            key=lambda p: p.stat().st_mtime,
        )
        mb = 1024 * 1024
        total = sum(f.stat().st_size for f in files)
        if total < self.min_keep_mb * mb:
            report["remaining_mb"] = total / mb
            return report

        cutoff = datetime.now() - timedelta(days=self.max_age_days)
        kept: list[Path] = []
        for f in files:
            if f == self._run_log_path:
                kept.append(f)
            elif datetime.fromtimestamp(f.stat().st_mtime) < cutoff:
                report["deleted_by_age"].append(f.name)
                f.unlink()
            else:
                kept.append(f)

        while kept and sum(f.stat().st_size for f in kept) > self.max_size_mb * mb:
            oldest = kept[0]
            if oldest == self._run_log_path:
                break
            kept.pop(0)
            report["deleted_by_size"].append(oldest.name)
            oldest.unlink()

        report["remaining_mb"] = sum(f.stat().st_size for f in kept) / mb
        return report


_manager: LogManager | None = None


def _default_config() -> dict[str, Any]:
    from config.settings import load_raw_config

    return dict(load_raw_config().get("logging") or {})


def init_logging(config: dict[str, Any] | None = None) -> LogManager:
    """显式初始化；已有 manager 时按新配置重建 handler。"""
    global _manager
    cfg = config if config is not None else _default_config()
    if _manager is None:
        _manager = LogManager(cfg)
    else:
        _manager.reconfigure(cfg)
    return _manager


def get_logger(name: str) -> logging.Logger:
    manager = _manager if _manager is not None else init_logging()
    return manager.get_logger(name)


def cleanup_logs() -> dict[str, Any]:
    manager = _manager if _manager is not None else init_logging()
    return manager.cleanup()


def shutdown_logging() -> None:
    if _manager is not None:
        _manager.shutdown()
