"""
Proxy router — the public LLM endpoint.

POST /{path}
  Runs the full pipeline (validate → auth → rate limit → route → cache →
  upstream → usage → cache store) and returns a Gemini-shaped body with
  X-Cache: HIT|MISS and X-Cache-Key headers.

OPTIONS /{path}
  CORS preflight answered without touching the pipeline.

GET/PUT/DELETE/PATCH/HEAD/TRACE are routed here too so method
validation answers with the structured error body instead of the
framework's default.

Must be mounted LAST: the catch-all path shadows everything after it.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.schemas.proxy import ErrorResponse, GenerateResponse
from app.services.pipeline import ProxyPipeline, envelope_from_request, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Proxy"])

Pipeline = Annotated[ProxyPipeline, Depends(get_pipeline)]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-API-Key",
}


@router.options(
    "/{path:path}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="CORS preflight",
    include_in_schema=False,
)
async def preflight(path: str) -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@router.api_route(
    "/{path:path}",
    methods=["POST", "GET", "PUT", "DELETE", "PATCH", "HEAD", "TRACE"],
    response_model=GenerateResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Proxy a generation request to the upstream LLM",
)
async def proxy_generate(path: str, request: Request, pipeline: Pipeline) -> JSONResponse:
    """
    Body:
        {"contents": [{"parts": [{"text": "..."}]}],
         "generationConfig": {...}?, "systemInstruction": "..."?, "taskType": "..."?}
    """
    envelope = await envelope_from_request(request, settings.CLIENT_IP_HEADER)
    result = await pipeline.handle(envelope)
    return JSONResponse(
        content=result.body,
        status_code=status.HTTP_200_OK,
        headers=result.response_headers(),
    )
