"""FastAPI app exposing the VCPSend control surface.

Configuration, the volume-key switch and the "send now" commands that the
companion UI (or any local automation) uses.
"""

from typing import Any

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from vcpsend.config import Settings
from vcpsend.logger import read_log_tail
from vcpsend.model.models import JobKind
from vcpsend.runtime import Runtime

# --- Pydanticモデル定義 ---


class VolumeKeyUpdate(BaseModel):
    """音量キー監視スイッチ更新リクエスト."""

    enabled: bool = True


class SettingsPatch(BaseModel):
    """設定の部分更新. 指定したキーだけを書き換える."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    base_url: str | None = None
    api_key: str | None = None
    model: str | None = None
    preset_message: str | None = None
    clip_preset_message: str | None = None
    system_prompt: str | None = None
    admin_username: str | None = None
    admin_password: str | None = None
    agent_dir_id: str | None = None
    screenshot_dir: str | None = None


class SendRequest(BaseModel):
    """即時送信リクエスト. preset を指定すると設定のプリセット文を上書きする."""

    preset: str | None = None

    @field_validator("preset")
    @classmethod
    def blank_preset_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v


def create_app(runtime: Runtime) -> FastAPI:
    """ランタイムを束ねた FastAPI アプリを作る."""
    app = FastAPI(
        title="VCPSend",
        description="Volume-key triggered screenshot/clipboard sender",
    )
    app.state.runtime = runtime

    def _send(kind: JobKind, req: SendRequest | None) -> dict[str, Any]:
        preset = req.preset if req else None
        handle = runtime.dispatcher.dispatch(kind, preset)
        return {"started": True, "job_id": handle.job.id}

    # --- APIエンドポイント定義 ---

    @app.get("/status")
    async def get_status() -> dict[str, Any]:
        """現在のシステム状態を取得する."""
        return {
            "enabled": runtime.gestures_enabled(),
            "listener_running": runtime.listener.running,
            "active_jobs": runtime.dispatcher.active_jobs(),
        }

    @app.get("/config")
    async def get_config() -> dict[str, Any]:
        return runtime.settings.snapshot().to_json_dict()

    @app.post("/config")
    async def update_config(settings: Settings) -> dict[str, Any]:
        """設定を丸ごと置き換える."""
        saved = runtime.settings.save(settings)
        return {"success": True, "config": saved.to_json_dict()}

    @app.patch("/config")
    async def patch_config(patch: SettingsPatch) -> dict[str, Any]:
        """指定したキーだけを更新する. null は変更なしとして扱う."""
        changes = patch.model_dump(exclude_none=True)
        saved = runtime.settings.update(**changes)
        return {"success": True, "config": saved.to_json_dict()}

    @app.get("/volume-key")
    async def get_volume_key() -> dict[str, Any]:
        return {
            "enabled": runtime.gestures_enabled(),
            "listener_running": runtime.listener.running,
        }

    @app.post("/volume-key")
    async def set_volume_key(req: VolumeKeyUpdate) -> dict[str, Any]:
        return {"enabled": runtime.set_gestures_enabled(req.enabled)}

    @app.post("/screenshot/send")
    async def send_screenshot(req: SendRequest | None = None) -> dict[str, Any]:
        """ダブルクリックと同じスクリーンショット送信."""
        return _send(JobKind.SCREENSHOT, req)

    @app.post("/clipboard/send")
    async def send_clipboard(req: SendRequest | None = None) -> dict[str, Any]:
        """長押しと同じクリップボード送信."""
        return _send(JobKind.CLIPBOARD, req)

    @app.get("/jobs")
    async def get_jobs() -> dict[str, Any]:
        return {"jobs": runtime.dispatcher.active_jobs()}

    # --- モニタリング用エンドポイント ---

    @app.get("/api/monitoring_data")
    async def get_monitoring_data() -> dict[str, Any]:
        return {
            "notifications": runtime.notifications.get_notification_history(),
            "active_jobs": runtime.notifications.active_jobs(),
            "debug_logs": read_log_tail(runtime.log_path),
        }

    return app
