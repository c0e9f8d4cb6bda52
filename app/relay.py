"""Server-side relay that keeps the upstream image API key off the client."""

import logging
from typing import Optional
import requests
from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import Settings, settings

logger = logging.getLogger(__name__)

RELAY_PATH = "/api/generate-image"

router = APIRouter()


class RelayRequest(BaseModel):
    """Body accepted by the relay. Both fields are required, checked by hand."""
    prompt: Optional[str] = None
    model: Optional[str] = None


def get_settings() -> Settings:
    return settings


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


@router.api_route(RELAY_PATH, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def method_not_allowed() -> JSONResponse:
    return _error(405, "Method Not Allowed")


@router.post(RELAY_PATH)
def generate_image(body: RelayRequest, config: Settings = Depends(get_settings)):
    """Forward ``{prompt, model}`` to the upstream image API.

    Returns the upstream JSON (``{"data": [{"url": ...}]}``) on success. On
    upstream failure the upstream status is passed through with
    ``{"message": ...}``.
    """
    if not config.ohmygpt_api_key:
        logger.error("Relay called but OHMYGPT_API_KEY is not configured")
        return _error(500, "The server-side API key is not configured. Contact the administrator.")

    if not body.prompt or not body.model:
        return _error(400, "Missing prompt or model in request body.")

    logger.info(f"Relaying generation for model {body.model}: {body.prompt[:50]}...")
    try:
        response = requests.post(
            config.ohmygpt_base_url,
            headers={"Authorization": f"Bearer {config.ohmygpt_api_key}"},
            json={
                "model": body.model,
                "prompt": body.prompt,
                "n": 1,
                "size": "1024x1024",
                "response_format": "url",
            },
            timeout=config.timeout,
        )
    except requests.RequestException as e:
        logger.error(f"Upstream request failed: {e}")
        return _error(500, "Internal server error while generating the image.")

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.ok:
        error = data.get("error") if isinstance(data, dict) else None
        message = error.get("message") if isinstance(error, dict) else None
        logger.error(f"Upstream API error ({response.status_code}): {message or response.reason}")
        return _error(
            response.status_code,
            message or f"Upstream API error: {response.reason}",
        )

    if data is None:
        logger.error("Upstream API returned a non-JSON success response")
        return _error(502, "Upstream API returned an invalid response.")

    return data


def create_app() -> FastAPI:
    """FastAPI application serving the relay."""
    app = FastAPI(title="Setka Studio")
    app.include_router(router)
    return app
