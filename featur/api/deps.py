"""
Featur: API dependencies

Routes reach services through the container stored on ``app.state`` by the
lifespan, and translate domain errors with ``http_error``.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, WebSocket

from featur.container import Container
from featur.errors import FeaturError


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_ws_container(websocket: WebSocket) -> Container:
    return websocket.app.state.container


def http_error(exc: FeaturError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))
