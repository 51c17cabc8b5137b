#!/usr/bin/env python3
"""VCPSend background launcher (Windows/macOS/Linux)."""

from __future__ import annotations

import os
import platform
import subprocess
import sys
import time
from typing import TYPE_CHECKING, cast

import psutil
import requests
from utils import (
    API_HOST,
    API_PORT,
    LOG_DIR,
    PID_FILE,
    REPO_ROOT,
    error,
    info,
    load_local_env,
    ok,
    warn,
)

if TYPE_CHECKING:
    from pathlib import Path


HTTP_OK_MIN = 200
HTTP_OK_MAX = 400
CREATE_NEW_PROCESS_GROUP = 0x00000200
DETACHED_PROCESS = 0x00000008


def http_ok(url: str, timeout: float = 2.5) -> bool:
    if not url.lower().startswith(("http://", "https://")):
        return False
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException:
        return False
    else:
        status = cast("int", getattr(resp, "status_code", 0))
        return HTTP_OK_MIN <= status < HTTP_OK_MAX


def wait_http(url: str, attempts: int = 30, interval: float = 1.0) -> bool:
    for _ in range(attempts):
        if http_ok(url):
            return True
        time.sleep(interval)
        sys.stdout.write(".")
        sys.stdout.flush()
    sys.stdout.write("\n")
    return http_ok(url)


def already_running() -> int | None:
    """PIDファイルのプロセスが生きていればそのPIDを返す."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text(encoding="ascii"))
    except ValueError:
        return None
    return pid if psutil.pid_exists(pid) else None


def background_popen(
    cmd: list[str], stdout_path: Path, stderr_path: Path, env: dict[str, str]
) -> subprocess.Popen:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    with stdout_path.open("ab", buffering=0) as stdout_f, stderr_path.open(
        "ab", buffering=0
    ) as stderr_f:
        creationflags = 0
        start_new_session = False
        if platform.system() == "Windows":
            creationflags = CREATE_NEW_PROCESS_GROUP | DETACHED_PROCESS
        else:
            start_new_session = True

        return subprocess.Popen(  # noqa: S603
            cmd,
            cwd=str(REPO_ROOT),
            stdout=stdout_f,
            stderr=stderr_f,
            env=env,
            creationflags=creationflags,
            start_new_session=start_new_session,
        )


def api_address(env: dict[str, str]) -> tuple[str, str]:
    """vcpsend.main と同じ環境変数でホスト/ポートを決める."""
    return env.get("VCPSEND_HOST", API_HOST), env.get("VCPSEND_PORT", str(API_PORT))


def start_service(env: dict[str, str]) -> int:
    info("Starting VCPSend (volume key listener + control API)...")
    host, port = api_address(env)
    proc = background_popen(
        [
            sys.executable,
            "-m",
            "vcpsend.main",
            "--host",
            host,
            "--port",
            port,
        ],
        stdout_path=LOG_DIR / "vcpsend.log",
        stderr_path=LOG_DIR / "vcpsend.err.log",
        env=env,
    )
    PID_FILE.write_text(str(proc.pid), encoding="ascii")
    sys.stdout.write("   Waiting for control API to respond...\n")
    if wait_http(f"http://{host}:{port}/status", attempts=30):
        ok(f"VCPSend up (PID {proc.pid})")
    else:
        warn("Control API did not respond in time. Check logs under ./log/")
    return proc.pid


def main() -> int:
    os.chdir(REPO_ROOT)
    sys.stdout.write("===============================\n")
    sys.stdout.write(" VCPSend Starting up...\n")
    sys.stdout.write("===============================\n")

    running = already_running()
    if running is not None:
        warn(f"VCPSend is already running (PID {running})")
        return 0

    load_local_env()
    child_env = os.environ.copy()
    child_env["PYTHONPATH"] = str(REPO_ROOT)

    pid = start_service(child_env)

    sys.stdout.write("\n")
    host, port = api_address(child_env)
    sys.stdout.write(f"  - Control API: http://{host}:{port}  (PID: {pid} )\n")
    sys.stdout.write("  - Volume up: double click = screenshot, long press = clipboard\n")
    sys.stdout.write("\n")
    sys.stdout.write("Logs: ./log/vcpsend.log, ./log/vcpsend.err.log\n")
    sys.stdout.write("Stop: python scripts/stop.py or python3 scripts/stop.py\n")

    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except OSError as e:
        error(f"Failed to start VCPSend: {e}")
        raise SystemExit(1) from e
