import logging
from pathlib import Path

__all__ = [
    "LOG_FILE_NAME",
    "configure_file_logging",
    "get_logger",
    "logger",
    "read_log_tail",
]

LOG_FILE_NAME = "vcp_debug.log"

logger = logging.getLogger("vcpsend")
logger.setLevel(logging.INFO)


def configure_file_logging(log_dir: Path) -> Path:
    """デバッグ用のファイルログを有効化し、ログファイルのパスを返す."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(
            handler.baseFilename
        ) == log_path.resolve():
            return log_path

    _fh = logging.FileHandler(log_path, encoding="utf-8")
    _fh.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_fh)
    return log_path


def get_logger(name: str) -> logging.Logger:
    """パッケージロガーの子ロガーを返す."""
    return logger.getChild(name)


def read_log_tail(log_path: Path, max_lines: int = 200) -> list[str]:
    """ログファイルの末尾を取得する. 存在しなければ空リスト."""
    if not log_path.exists():
        return []
    try:
        with log_path.open(encoding="utf-8", errors="ignore") as f:
            lines = f.read().splitlines()
    except OSError:
        return []
    return lines[-max_lines:]
