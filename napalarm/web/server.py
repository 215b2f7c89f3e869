"""
FastAPI web server for napalarm.

Provides the oEmbed metadata proxy plus JSON endpoints for creating alarms,
browsing the alarm history and editing configuration.
"""

import logging
import time
from dataclasses import asdict
from typing import Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config_manager import ConfigManager
from ..durations import resolve_duration_ms
from ..errors import InvalidDurationError, MetadataError
from ..history import AlarmHistory
from ..models import MusicKind, MusicSource
from ..oembed import MetadataProxyClient

logger = logging.getLogger(__name__)


# Request models
class CreateAlarmRequest(BaseModel):
    preset: Optional[Union[str, int]] = None
    custom_hours: Optional[int] = 0
    custom_minutes: Optional[int] = 0
    custom_seconds: Optional[int] = 0
    music_url: str = ""
    label: Optional[str] = None


class ConfigUpdateRequest(BaseModel):
    key: str
    value: str


# Dependency to get components
def get_config_manager(request: Request) -> ConfigManager:
    """Get ConfigManager from app state."""
    return request.app.state.config_manager


def get_history(request: Request) -> AlarmHistory:
    """Get AlarmHistory from app state."""
    return request.app.state.history


def get_metadata_client(request: Request) -> MetadataProxyClient:
    """Get MetadataProxyClient from app state."""
    return request.app.state.metadata_client


def create_app(
    config_manager: ConfigManager,
    history: AlarmHistory,
    metadata_client: Optional[MetadataProxyClient] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        config_manager: ConfigManager instance
        history: AlarmHistory instance
        metadata_client: MetadataProxyClient (built from config if omitted)

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="napalarm", version="1.0.0")

    # Store components in app state
    app.state.config_manager = config_manager
    app.state.history = history
    app.state.metadata_client = metadata_client or MetadataProxyClient(config_manager)

    # Metadata proxy (sync route: runs in the threadpool)
    @app.get("/oembed")
    def get_oembed(
        url: str = "",
        client: MetadataProxyClient = Depends(get_metadata_client),
    ):
        """Resolve title, author and thumbnail for an external video link."""
        try:
            metadata = client.resolve_metadata(url)
        except MetadataError as e:
            return JSONResponse(status_code=e.http_status, content=e.to_response())
        return asdict(metadata)

    # Alarm endpoints
    @app.post("/api/alarms")
    def create_alarm(
        request_data: CreateAlarmRequest,
        history_store: AlarmHistory = Depends(get_history),
        client: MetadataProxyClient = Depends(get_metadata_client),
    ):
        """Validate an alarm form and record it in the history."""
        try:
            duration_ms = resolve_duration_ms(
                request_data.preset,
                request_data.custom_hours,
                request_data.custom_minutes,
                request_data.custom_seconds,
            )
        except InvalidDurationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        source = MusicSource.from_url(request_data.music_url, request_data.label)
        label = source.label
        if label is None and source.kind == MusicKind.EXTERNAL_VIDEO:
            try:
                label = client.resolve_metadata(source.locator).title
            except MetadataError as e:
                logger.info("No label for %s: %s", source.locator, e.code)

        ends_at_ms = int(time.time() * 1000) + duration_ms
        music_url = source.history_locator()
        history_store.record(duration_ms, music_url, source.kind.value, label=label)
        logger.info("Alarm created: %s ms, music=%s", duration_ms, source.kind.value)

        return {
            "duration_ms": duration_ms,
            "ends_at_ms": ends_at_ms,
            "music_url": music_url,
            "kind": source.kind.value,
            "label": label,
        }

    # History endpoints
    @app.get("/api/history")
    async def get_history_entries(history_store: AlarmHistory = Depends(get_history)):
        """Recently used alarms, most recent first."""
        return {"history": [asdict(entry) for entry in history_store.get_recent()]}

    @app.delete("/api/history")
    async def clear_history(history_store: AlarmHistory = Depends(get_history)):
        history_store.clear()
        return {"status": "cleared"}

    # Configuration endpoints
    @app.get("/api/config")
    async def get_config(config: ConfigManager = Depends(get_config_manager)):
        """
        Get all configuration with rich schema metadata.

        Returns:
            - values: Current configuration values
            - schema: Metadata for each editable key (control type, options, description)
            - groups: Group definitions for organizing the config UI
        """
        return config.get_full_config()

    @app.post("/api/config")
    async def update_config(
        request_data: ConfigUpdateRequest,
        config: ConfigManager = Depends(get_config_manager),
    ):
        """Update one editable configuration key."""
        if not config.is_editable(request_data.key):
            raise HTTPException(
                status_code=400, detail=f"Unknown configuration key: {request_data.key}"
            )

        config.set(request_data.key, request_data.value)
        return {
            "status": "updated",
            "key": request_data.key,
            "value": request_data.value,
        }

    return app
