"""Process entry: start the volume key listener and the local control API."""

import argparse
import os
from pathlib import Path

import uvicorn

from vcpsend.api.main import create_app
from vcpsend.config import API_HOST, API_PORT, load_local_env
from vcpsend.runtime import build_runtime

# 終了時に実行中のジョブを待つ上限
SHUTDOWN_TIMEOUT_S = 60.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vcpsend", description=__doc__)
    parser.add_argument("--host", default=os.getenv("VCPSEND_HOST", API_HOST))
    parser.add_argument(
        "--port", type=int, default=int(os.getenv("VCPSEND_PORT", str(API_PORT)))
    )
    parser.add_argument(
        "--home",
        type=Path,
        default=None,
        help="settings/log directory (default: $VCPSEND_HOME or ~/.vcpsend)",
    )
    parser.add_argument(
        "--no-listener",
        action="store_true",
        help="run only the control API, without the volume key listener",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_local_env()
    args = parse_args(argv)

    runtime = build_runtime(args.home)
    if not args.no_listener:
        runtime.start()
    try:
        uvicorn.run(create_app(runtime), host=args.host, port=args.port)
    finally:
        runtime.stop(SHUTDOWN_TIMEOUT_S)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
