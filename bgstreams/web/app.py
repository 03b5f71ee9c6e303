"""FastAPI app exposing the stream-resolution addon protocol."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, Optional, Union
from urllib.parse import unquote
import json
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..core.event_bus import Events
from ..core.settings_manager import parse_providers
from ..models.stream import SessionCredentials
from ..services.axel_login import LoginError
from .runtime import BGStreamsRuntime, build_runtime

logger = logging.getLogger(__name__)

ADDON_VERSION = "1.0.0"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AddonConfig(BaseModel):
    """Per-request addon configuration carried in the URL path"""
    providers: Optional[str] = None
    axel_uid: str = ""
    axel_pass: str = ""
    zamunda_uid: str = ""
    zamunda_pass: str = ""


CONFIG_KEYS = ("providers", "axel_uid", "axel_pass", "zamunda_uid", "zamunda_pass")


class AxelLoginRequest(BaseModel):
    username: str = ""
    password: str = ""


def parse_addon_config(raw: Union[str, Dict[str, Any], None]) -> AddonConfig:
    """Decode the URL-encoded JSON config segment; anything invalid degrades to defaults"""
    if not raw:
        return AddonConfig()
    data: Any = raw
    if isinstance(raw, str):
        data = None
        for candidate in (raw, unquote(raw)):
            try:
                data = json.loads(candidate)
                break
            except ValueError:
                continue
    if not isinstance(data, dict):
        return AddonConfig()
    cleaned = {}
    for key in CONFIG_KEYS:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        cleaned[key] = str(value).strip()
    try:
        return AddonConfig(**cleaned)
    except ValueError:
        return AddonConfig()


def build_manifest(public_url: str = "") -> Dict[str, Any]:
    manifest: Dict[str, Any] = {
        "id": "org.bgstreams.addon",
        "version": ADDON_VERSION,
        "name": "BGTorrents",
        "description": "Torrent streams from Bulgarian trackers (Zamunda.rip, AXELbg, Zamunda).",
        "resources": ["stream"],
        "types": ["movie", "series"],
        "idPrefixes": ["tt"],
        "catalogs": [],
        "config": [
            {"key": "providers", "type": "text", "title": "Providers (rip,axel,zamunda)"},
            {"key": "axel_uid", "type": "text", "title": "AXELbg UID"},
            {"key": "axel_pass", "type": "text", "title": "AXELbg Pass"},
            {"key": "zamunda_uid", "type": "text", "title": "Zamunda UID"},
            {"key": "zamunda_pass", "type": "text", "title": "Zamunda Pass"},
        ],
        "behaviorHints": {"configurable": True, "configurationRequired": False},
    }
    if public_url:
        manifest["logo"] = f"{public_url.rstrip('/')}/static/logo.png"
    return manifest


def create_app(runtime: Optional[BGStreamsRuntime] = None) -> FastAPI:
    runtime = runtime or build_runtime()
    recent_requests: deque = deque(maxlen=50)
    recent_lock = RLock()

    def _remember(payload):
        payload = payload or {}
        with recent_lock:
            recent_requests.append({
                "time": _utc_now_iso(),
                "count": payload.get("count", 0),
                "sourceWarnings": dict(payload.get("source_warnings") or {}),
            })

    runtime.event_bus.subscribe(Events.STREAMS_COMPLETED, _remember)

    def _request_scope(config: AddonConfig):
        enabled = parse_providers(config.providers) if config.providers else None
        if enabled is None:
            enabled = dict(runtime.settings.get("enabled_sources", {}) or {})
        credentials = {
            "axel": SessionCredentials(
                uid=config.axel_uid or str(runtime.settings.get("axel_uid", "") or ""),
                password=config.axel_pass or str(runtime.settings.get("axel_pass", "") or ""),
            ),
            "zamunda": SessionCredentials(
                uid=config.zamunda_uid or str(runtime.settings.get("zamunda_uid", "") or ""),
                password=config.zamunda_pass or str(runtime.settings.get("zamunda_pass", "") or ""),
            ),
        }
        return enabled, credentials

    def _streams(content_type: str, content_id: str, raw_config: Optional[str]) -> Dict[str, Any]:
        try:
            enabled, credentials = _request_scope(parse_addon_config(raw_config))
            streams = runtime.aggregator.resolve(content_type, content_id, enabled, credentials)
            return {"streams": [stream.to_stremio() for stream in streams]}
        except Exception as e:
            logger.error("[Stream] Error: %s", e)
            return {"streams": []}

    app = FastAPI(title="BGStreams Addon", version=ADDON_VERSION)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    app.state.runtime = runtime

    @app.get("/health")
    def health() -> Dict:
        with recent_lock:
            recent = list(recent_requests)[-10:]
        return {
            "ok": True,
            "time": _utc_now_iso(),
            "sources": runtime.aggregator.get_source_health_snapshot(),
            "caches": runtime.caches.stats(),
            "proxies": len(runtime.proxy_pool),
            "recent": recent,
        }

    @app.get("/manifest.json")
    def manifest() -> Dict:
        return build_manifest(str(runtime.settings.get("public_url", "") or ""))

    @app.get("/{config}/manifest.json")
    def configured_manifest(config: str) -> Dict:
        return build_manifest(str(runtime.settings.get("public_url", "") or ""))

    @app.get("/stream/{content_type}/{content_id}.json")
    def stream(content_type: str, content_id: str) -> Dict:
        return _streams(content_type, content_id, None)

    @app.get("/{config}/stream/{content_type}/{content_id}.json")
    def configured_stream(config: str, content_type: str, content_id: str) -> Dict:
        return _streams(content_type, content_id, config)

    @app.post("/api/axel-login")
    def axel_login(body: AxelLoginRequest) -> Dict:
        try:
            credentials = runtime.login_client.login(body.username, body.password)
        except LoginError as e:
            return {"error": str(e)}
        return {"uid": credentials.uid, "pass": credentials.password}

    return app


app = create_app()
