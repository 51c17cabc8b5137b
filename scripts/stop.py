#!/usr/bin/env python3
import contextlib
import os
from pathlib import Path

import psutil
from utils import PID_FILE, REPO_ROOT, info, ok

# vcpsend.main が実行中のジョブを待つ時間（60秒）より長く待つ
STOP_TIMEOUT_S = 65


def stop_by_pid_file(path: Path) -> None:
    if not path.exists():
        info("PID file not found, nothing to stop")
        return
    pid = int(path.read_text(encoding="ascii"))
    try:
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=STOP_TIMEOUT_S)
        except psutil.TimeoutExpired:
            proc.kill()
        ok(f"VCPSend stopped (PID {pid})")
    except psutil.NoSuchProcess:
        info("すでに停止済みです")
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def main() -> int:
    os.chdir(REPO_ROOT)

    info("============== VCPSend 停止中 ================")
    stop_by_pid_file(PID_FILE)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
