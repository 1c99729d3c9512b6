"""
Read-only HTTP viewer for stored descriptions.

Endpoints:
    GET /                               - Names of all stored descriptions
    GET /descriptions/{name}            - Full manifest of one description
    GET /descriptions/{name}/{scope}    - One scope of a description

The server binds to localhost unless ``--public`` is given.
"""

from __future__ import annotations

import logging

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel

from machinery import __version__
from machinery._types import CurrentUser
from machinery.errors import DescriptionError, DescriptionNotFound, ServerPortError
from machinery.store import SystemDescriptionStore, check_format

logger = logging.getLogger(__name__)

MIN_PORT = 2
MAX_PORT = 65535
PRIVILEGED_PORT_LIMIT = 1023


class DescriptionList(BaseModel):
    """Response model for the description index."""

    descriptions: list[str]


def check_port_validity(port: int, user: CurrentUser | None = None) -> None:
    """Reject ports outside 2-65535 and privileged ports for non-root users.

    Raises:
        ServerPortError: If the port cannot be used.

    """
    if port < MIN_PORT or port > MAX_PORT:
        raise ServerPortError(f"Please specify a valid port between {MIN_PORT} and {MAX_PORT}.", port)
    user = user or CurrentUser.capture()
    if port <= PRIVILEGED_PORT_LIMIT and not user.is_root:
        raise ServerPortError(f"The specified port '{port}' requires root privileges.", port)


def create_app(store: SystemDescriptionStore) -> FastAPI:
    """Build the viewer application for ``store``."""
    router = APIRouter(tags=["descriptions"])

    def load(name: str) -> dict:
        try:
            data = store.load_raw(name)
            check_format(name, data)
        except DescriptionNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except DescriptionError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return data

    @router.get("/", response_model=DescriptionList, summary="List system descriptions")
    def list_descriptions():
        return DescriptionList(descriptions=store.list())

    @router.get("/descriptions/{name}", summary="Get a system description")
    def get_description(name: str):
        return load(name)

    @router.get("/descriptions/{name}/{scope}", summary="Get one scope of a system description")
    def get_scope(name: str, scope: str):
        data = load(name)
        key = scope.replace("-", "_")
        if key in ("meta", "filters") or key not in data:
            raise HTTPException(status_code=404, detail=f"The scope '{scope}' is not part of '{name}'.")
        return data[key]

    app = FastAPI(title="Machinery", description="System description viewer", version=__version__)
    app.include_router(router)
    return app


def serve(store: SystemDescriptionStore, *, port: int, public: bool = False) -> None:
    """Validate ``port`` and run the viewer until interrupted."""
    check_port_validity(port)
    host = "0.0.0.0" if public else "127.0.0.1"  # nosec B104 - only with --public
    logger.info("Serving descriptions from %s on %s:%s", store.base_path, host, port)
    uvicorn.run(create_app(store), host=host, port=port, log_level="warning")
