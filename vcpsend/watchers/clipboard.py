import logging

import pyperclip

from vcpsend.errors import CaptureError
from vcpsend.logger import get_logger


class ClipboardCapture:
    """クリップボードの現在のテキストを取得する."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger("clipboard")

    def capture(self) -> str | None:
        """前後の空白を除いたテキストを返す. 空なら None.

        Raises:
            CaptureError: クリップボードを読み取れない場合

        """
        try:
            text = pyperclip.paste()
        except pyperclip.PyperclipException as e:
            msg = f"Failed to read clipboard: {e}"
            raise CaptureError(msg) from e

        if not isinstance(text, str) or not text.strip():
            self.logger.info("Clipboard is empty")
            return None

        text = text.strip()
        self.logger.info("Clipboard captured | chars=%s", len(text))
        return text
