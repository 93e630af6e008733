from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from icswatch.config_manager import MASK, ConfigManager
from icswatch.scheduler import WatchScheduler, build_watcher
from icswatch.watcher import Watcher


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class AppContext:
    def __init__(self, config_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        config = self.config_manager.load()
        self.watcher = build_watcher(config)
        self.scheduler = WatchScheduler(self.watcher, config.watch.backup_name)


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_password = str(current.get("caldav", {}).get("password", ""))
    caldav = sanitized.get("caldav")
    if isinstance(caldav, dict):
        caldav = dict(caldav)
        password = caldav.get("password")
        if password is not None and str(password).strip() in {"", MASK}:
            if current_password:
                caldav.pop("password", None)
            else:
                caldav["password"] = ""
        if caldav:
            sanitized["caldav"] = caldav
        else:
            sanitized.pop("caldav", None)
    return sanitized


def _status(watcher: Watcher, scheduler: WatchScheduler) -> dict[str, Any]:
    return {
        "name": watcher.calendar_name,
        "description": watcher.calendar_description,
        "ttl_seconds": int(watcher.ttl.total_seconds()),
        "initialized": watcher.initialized,
        "occurrences": len(watcher.get_state()),
        "phase": watcher.phase.value,
        "cycles": watcher.cycles,
        "last_events_count": watcher.last_events_count,
        "last_run_at": watcher.last_run_at.isoformat() if watcher.last_run_at else None,
        "running": scheduler.is_running(),
        "last_error": scheduler.last_error or watcher.last_error,
    }


def create_app(context: AppContext | None = None) -> FastAPI:
    if context is None:
        context = AppContext(config_path=os.getenv("ICSWATCH_CONFIG_PATH", "config.yaml"))

    app = FastAPI(title="icswatch", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        app.state.context.config_manager.update(sanitized_payload)
        return {
            "message": "config updated, restart to apply",
            "config": app.state.context.config_manager.masked(),
        }

    @app.get("/api/status")
    def get_status() -> dict[str, Any]:
        return _status(app.state.context.watcher, app.state.context.scheduler)

    @app.get("/api/events")
    def list_events() -> dict[str, Any]:
        state = app.state.context.watcher.get_state()
        return {
            "count": len(state),
            "events": [
                {
                    "uid": uid,
                    "summary": occurrence.summary,
                    "start": occurrence.get_value("DTSTART"),
                    "end": occurrence.get_value("DTEND"),
                }
                for uid, occurrence in sorted(state.items())
            ],
        }

    @app.get("/api/events/{uid:path}")
    def get_event(uid: str) -> dict[str, Any]:
        occurrence = app.state.context.watcher.get_state().get(uid)
        if occurrence is None:
            raise HTTPException(status_code=404, detail="event not found")
        return {"uid": uid, "properties": occurrence.to_list()}

    @app.post("/api/refresh")
    def refresh() -> dict[str, Any]:
        scheduler = app.state.context.scheduler
        if not scheduler.is_running():
            raise HTTPException(status_code=409, detail="watcher is not running")
        scheduler.trigger_manual()
        return {"message": "refresh triggered"}

    return app
