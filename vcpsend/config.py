"""Durable settings for vcpsend.

Settings are stored as JSON key/value pairs in the data directory
(``~/.vcpsend`` unless ``VCPSEND_HOME`` is set). A job takes a snapshot of
them when it starts, so edits made while a job runs only affect later jobs.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from vcpsend.logger import get_logger

APP_NAME = "VCPSend"
SETTINGS_FILE_NAME = "settings.json"
VOLUME_KEY_FILE_NAME = "volume_key.json"

DEFAULT_PRESET_MESSAGE = "识别截图内容并记录日记"
DEFAULT_CLIP_PRESET_MESSAGE = "分析以下内容"

API_HOST = "127.0.0.1"
API_PORT = 5578

logger = get_logger("config")


def data_dir() -> Path:
    """設定・ログを置くディレクトリ."""
    override = os.getenv("VCPSEND_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".vcpsend"


def load_local_env(repo_root: Path | None = None) -> None:
    """カレント（または指定ディレクトリ）の .env.local を環境変数に読み込む."""
    root = repo_root or Path.cwd()
    load_dotenv(dotenv_path=root / ".env.local", override=False)


class Settings(BaseModel):
    """APIと話題同期の設定値."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    base_url: str = ""
    api_key: str = ""
    model: str = ""
    preset_message: str = DEFAULT_PRESET_MESSAGE
    clip_preset_message: str = DEFAULT_CLIP_PRESET_MESSAGE
    system_prompt: str = ""
    admin_username: str = ""
    admin_password: str = ""
    agent_dir_id: str = ""
    screenshot_dir: str = ""

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slashes(cls, v: str) -> str:
        """末尾の / を取り除く."""
        return v.strip().rstrip("/")

    @property
    def api_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    @property
    def history_configured(self) -> bool:
        return bool(self.base_url and self.admin_username and self.agent_dir_id)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to read %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    tmp_path.replace(path)


class SettingsStore:
    """JSONファイルに永続化される設定ストア（スレッドセーフ）."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or data_dir() / SETTINGS_FILE_NAME
        self._lock = threading.Lock()
        self._settings = self._load()

    def _load(self) -> Settings:
        raw = _read_json(self.path)
        try:
            return Settings.model_validate(raw)
        except ValidationError as e:
            logger.warning("Invalid settings in %s, using defaults: %s", self.path, e)
            return Settings()

    def snapshot(self) -> Settings:
        """ジョブ開始時に取る読み取り専用スナップショット."""
        with self._lock:
            return self._settings

    def save(self, settings: Settings) -> Settings:
        with self._lock:
            _write_json(self.path, settings.to_json_dict())
            self._settings = settings
        logger.info("Settings saved to %s", self.path)
        return settings

    def update(self, **changes: Any) -> Settings:
        with self._lock:
            merged = self._settings.model_dump() | changes
            settings = Settings.model_validate(merged)
            _write_json(self.path, settings.to_json_dict())
            self._settings = settings
        logger.info("Settings updated: %s", ", ".join(sorted(changes)))
        return settings


class GestureSwitch:
    """音量キー監視の有効/無効フラグ.

    検出器がキーイベントごとに読むため、読み書きはロックで保護する.
    変更時に永続化し、起動時に読み込む. 既定は有効.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or data_dir() / VOLUME_KEY_FILE_NAME
        self._lock = threading.Lock()
        self._enabled = bool(_read_json(self.path).get("enabled", True))

    def is_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set_enabled(self, enabled: bool) -> bool:
        with self._lock:
            self._enabled = enabled
            _write_json(self.path, {"enabled": enabled})
        logger.info("Volume key gestures %s", "enabled" if enabled else "disabled")
        return enabled
