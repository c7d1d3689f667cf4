from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse

from mystery_party.api.deps import get_hub, get_settings, get_store
from mystery_party.api.models import ErrorResponse, GameListResponse, GameResponse, HostLoginRequest
from mystery_party.broadcast import SnapshotHub, stream_snapshots, sync_event
from mystery_party.game_store import GameStore, InvalidGameCode, PersistenceError, clean_code
from mystery_party.protocol import WrongHostPassword, authenticate_host
from mystery_party.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/api/games", response_model=GameListResponse)
async def list_games_route(store: GameStore = Depends(get_store)) -> GameListResponse:
    return GameListResponse(games=store.list())


@router.get("/api/games/{code}", response_model=GameResponse, responses=_ERRORS)
async def get_game_route(code: str, store: GameStore = Depends(get_store)) -> GameResponse:
    game = store.get(clean_code(code))
    if game is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    return GameResponse(game=game)


@router.put("/api/games/{code}", response_model=GameResponse, responses=_ERRORS)
async def put_game_route(
    code: str,
    request: Request,
    store: GameStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> GameResponse:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.max_body_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Request body too large")

    body = await request.body()
    if len(body) > settings.max_body_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Request body too large")

    try:
        parsed = json.loads(body) if body else {}
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request") from e
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")

    try:
        game = store.put(clean_code(code), parsed)
    except InvalidGameCode as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e

    return GameResponse(game=game)


@router.post("/api/host/login", responses=_ERRORS)
async def host_login_route(
    req: HostLoginRequest,
    settings: Settings = Depends(get_settings),
) -> dict[str, bool]:
    try:
        authenticate_host(req.password, expected=settings.host_password)
    except WrongHostPassword as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    return {"ok": True}


@router.get("/api/stream")
async def stream_route(
    request: Request,
    store: GameStore = Depends(get_store),
    hub: SnapshotHub = Depends(get_hub),
) -> StreamingResponse:
    return StreamingResponse(
        stream_snapshots(hub, snapshot=store.snapshot, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.websocket("/ws/games")
async def games_ws(
    websocket: WebSocket,
    store: GameStore = Depends(get_store),
    hub: SnapshotHub = Depends(get_hub),
) -> None:
    await hub.connect(websocket)
    await websocket.send_json(sync_event(store.snapshot()))

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(websocket)
    except Exception:
        await hub.disconnect(websocket)
        raise
