#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path

# Paths used by both start and stop scripts
REPO_ROOT = Path(__file__).resolve().parent.parent
LOG_DIR = REPO_ROOT / "log"
PID_FILE = REPO_ROOT / "vcpsend.pid"

# チェックアウトから直接実行してもパッケージを読み込めるようにする
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vcpsend import config  # noqa: E402

API_HOST = config.API_HOST
API_PORT = config.API_PORT


def load_local_env() -> None:
    """vcpsend.main と同じく、既存の環境変数を優先して .env.local を読む."""
    config.load_local_env(REPO_ROOT)


# Lightweight logging helpers used in both scripts
def info(msg: str) -> None:
    sys.stdout.write(f"[INFO] {msg}\n")


def ok(msg: str) -> None:
    sys.stdout.write(f"[OK] {msg}\n")


def warn(msg: str) -> None:
    sys.stdout.write(f"[WARN] {msg}\n")


def error(msg: str) -> None:
    sys.stdout.write(f"[ERROR] {msg}\n")
