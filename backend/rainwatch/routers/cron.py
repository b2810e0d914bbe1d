import json
import logging

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from rainwatch.config import Settings
from rainwatch.core.errors import InvalidPayloadError, RainwatchError, error_to_response
from rainwatch.deps import get_engine, get_resolver, get_settings
from rainwatch.services.config_resolver import ConfigResolver
from rainwatch.services.dispatch import DEFAULT_SLOT, DispatchEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def _cron_authorized(authorization: str | None, secret: str) -> bool:
    if not secret:
        return True
    return bool(authorization) and authorization == f"Bearer {secret}"


@router.api_route("/forecast", methods=["GET", "POST"])
async def run_forecast(
    slot: str = Query(DEFAULT_SLOT),
    authorization: str | None = Header(None),
    engine: DispatchEngine = Depends(get_engine),
    app_settings: Settings = Depends(get_settings),
):
    """Dispatch one slot. Called by an external cron."""
    if not _cron_authorized(authorization, app_settings.cron_secret):
        return JSONResponse(status_code=401, content={"ok": False, "error": "Unauthorized"})

    result = await engine.dispatch_slot(slot)
    if not result.ok:
        return JSONResponse(status_code=400, content=result.model_dump(mode="json"))
    return result


@router.get("/config")
async def read_config(
    authorization: str | None = Header(None),
    resolver: ConfigResolver = Depends(get_resolver),
):
    """Merged effective configuration (defaults + settings + stored override)."""
    try:
        resolver.check_store()
        resolver.check_admin(authorization)
    except RainwatchError as e:
        return error_to_response(e)
    config = await resolver.effective_config()
    return {"ok": True, "config": config.model_dump(exclude_none=True)}


@router.post("/config")
async def write_config(
    request: Request,
    authorization: str | None = Header(None),
    resolver: ConfigResolver = Depends(get_resolver),
):
    """Validate a partial config and deep-merge it onto the stored override."""
    try:
        resolver.check_store()
        resolver.check_admin(authorization)
        try:
            payload = json.loads(await request.body() or b"null")
        except ValueError as e:
            raise InvalidPayloadError("Invalid JSON body", code="invalid_json") from e
        config = await resolver.update(payload, authorization)
    except RainwatchError as e:
        return error_to_response(e)
    return {"ok": True, "config": config.model_dump(exclude_none=True)}


@router.api_route("/config", methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
async def config_method_not_allowed():
    return JSONResponse(status_code=405, content={"ok": False, "error": "Method not allowed"})
