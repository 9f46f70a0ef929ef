"""
Configuration routes for the admin API.

Provides:
- GET /api/config - Current configuration (API keys masked)
- PUT /api/config - Partial update, hot-reloaded into live components and persisted
"""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError

from autoresponder.config.schema import Config
from autoresponder.server.dependencies import ConfigDep, ManagerDep

router = APIRouter()


def redact_config(config: Config) -> dict[str, Any]:
    """Dump a config with API keys replaced by a has_key flag."""
    data = config.model_dump(mode="json")
    for provider in data.get("providers", {}).values():
        provider["has_key"] = bool(provider.get("api_key"))
        provider["api_key"] = ""
    return data


def _drop_blank_keys(update: dict[str, Any]) -> dict[str, Any]:
    """Blank api_key values mean "unchanged" so a redacted dump can be sent back."""
    providers = update.get("providers")
    if isinstance(providers, dict):
        for provider in providers.values():
            if isinstance(provider, dict):
                provider.pop("has_key", None)
                if not provider.get("api_key"):
                    provider.pop("api_key", None)
    return update


@router.get("")
async def get_config(config: ConfigDep):
    """Get the current configuration."""
    return JSONResponse(redact_config(config))


@router.put("")
async def update_config(manager: ManagerDep, update: dict[str, Any] = Body(...)):
    """
    Apply a partial configuration update.

    Rate limit, loop detection, breaker, history and delivery settings take
    effect on the next message without a restart.
    """
    try:
        config = await manager.apply_config(_drop_blank_keys(update))
    except ValidationError as e:
        logger.warning(f"Rejected config update: {e.error_count()} validation error(s)")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )

    return JSONResponse({
        "success": True,
        "config": redact_config(config),
    })
