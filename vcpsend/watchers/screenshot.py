"""Latest-screenshot lookup and JPEG encoding built on PIL.

The system screenshot tool may need a few seconds to flush the file to disk,
so the directory is polled a bounded number of times before giving up.
"""

import base64
import logging
import time
from collections.abc import Callable
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from vcpsend.errors import CaptureError
from vcpsend.logger import get_logger
from vcpsend.model.models import ScreenshotPayload

SCAN_ATTEMPTS = 5
SCAN_INTERVAL_S = 2.0
FRESH_AGE_S = 10.0  # これより新しければ即使用
MAX_AGE_S = 600.0  # これより古ければ「最近のスクリーンショットなし」
MAX_DIMENSION = 1024
JPEG_QUALITY = 60
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")


def default_screenshot_dirs() -> list[Path]:
    """スクリーンショットの既定ディレクトリ候補（優先順）."""
    home = Path.home()
    return [home / "Pictures" / "Screenshots", home / "DCIM" / "Screenshots"]


def encode_image(path: Path) -> str:
    """長辺を MAX_DIMENSION 以下に縮小し、JPEG の base64 文字列を返す.

    Raises:
        CaptureError: 画像を読み込めない場合

    """
    try:
        with Image.open(path) as opened:
            image = opened.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        msg = f"无法读取截图文件: {path.name} ({type(e).__name__}: {e})"
        raise CaptureError(msg) from e

    width, height = image.size
    longest = max(width, height)
    if longest > MAX_DIMENSION:
        scale = MAX_DIMENSION / longest
        image = image.resize(
            (round(width * scale), round(height * scale)),
            Image.Resampling.LANCZOS,
        )

    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return base64.b64encode(buffer.getvalue()).decode()


class ScreenshotCapture:
    """最新のスクリーンショットを探して送信用に変換する."""

    def __init__(
        self,
        directory: Path | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        progress: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.directory = directory
        self.clock = clock
        self.sleep = sleep
        self.progress = progress
        self.logger = logger or get_logger("screenshot")

    def resolve_directory(self) -> Path | None:
        candidates = [self.directory] if self.directory else default_screenshot_dirs()
        for candidate in candidates:
            if candidate.is_dir():
                return candidate
        return None

    def _list_images(self, directory: Path) -> list[tuple[Path, float]]:
        try:
            return [
                (p, p.stat().st_mtime)
                for p in directory.iterdir()
                if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
            ]
        except OSError as e:
            msg = f"Failed to list screenshot directory {directory}: {e}"
            raise CaptureError(msg) from e

    def find_latest(self) -> tuple[Path, float] | None:
        """最新ファイルとその経過秒数を返す. 最近のものがなければ None."""
        directory = self.resolve_directory()
        if directory is None:
            self.logger.info("Screenshot directory not found")
            return None

        latest: Path | None = None
        age = float("inf")
        for scan in range(SCAN_ATTEMPTS):
            if scan > 0:
                self.logger.info("Waiting for screenshot write | scan=%s", scan + 1)
                self._report(f"等待截图写入... ({scan}/{SCAN_ATTEMPTS})")
                self.sleep(SCAN_INTERVAL_S)

            files = self._list_images(directory)
            if not files:
                self.logger.info("No screenshot files | dir=%s", directory)
                continue

            latest, mtime = max(files, key=lambda item: item[1])
            age = self.clock() - mtime
            self.logger.info(
                "Scan %s latest=%s age=%.1fs files=%s",
                scan + 1,
                latest.name,
                age,
                len(files),
            )
            if age < FRESH_AGE_S:
                break

        if latest is None:
            return None
        if age > MAX_AGE_S:
            self.logger.info("Latest screenshot older than %ss, skipping", MAX_AGE_S)
            return None
        return latest, age

    def capture(self) -> ScreenshotPayload | None:
        found = self.find_latest()
        if found is None:
            return None
        path, age = found
        self._report(f"正在处理截图: {path.name}")
        image_base64 = encode_image(path)
        self.logger.info(
            "Screenshot encoded | name=%s b64_len=%s", path.name, len(image_base64)
        )
        return ScreenshotPayload(
            name=path.name, image_base64=image_base64, age_seconds=age
        )

    def _report(self, text: str) -> None:
        if self.progress is not None:
            self.progress(text)
