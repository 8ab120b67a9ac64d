from __future__ import annotations

import redis
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from natsuki_quest.api.deps import get_redis, get_session
from natsuki_quest.api.models import (
    CheckpointRequest,
    CheckpointStatus,
    RewindRequest,
    SaveListResponse,
    StateAggregate,
    StateChange,
    StateEvent,
    TurnRequest,
    TurnResponse,
)
from natsuki_quest.errors import GameNotFound, StoreUnavailable, TurnInProgress
from natsuki_quest.lock import turn_lock
from natsuki_quest.session import GameSession
from natsuki_quest.websocket_hub import hub

router = APIRouter()


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, GameNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, TurnInProgress):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, StoreUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.websocket("/ws/game/{owner_id}")
async def state_updates_ws(websocket: WebSocket, owner_id: str) -> None:
    await hub.attach(owner_id, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.detach(owner_id, websocket)
    except Exception:
        hub.detach(owner_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/game", response_model=SaveListResponse)
async def list_saves_route(session: GameSession = Depends(get_session)) -> SaveListResponse:
    try:
        return SaveListResponse(saves=session.list_saves())
    except StoreUnavailable as e:
        raise _http_error(e) from e


@router.post("/game/{owner_id}", response_model=StateAggregate, status_code=status.HTTP_201_CREATED)
async def new_game_route(owner_id: str, session: GameSession = Depends(get_session)) -> StateAggregate:
    try:
        state = session.new_game(owner_id)
    except (ValueError, StoreUnavailable) as e:
        raise _http_error(e) from e

    await hub.publish(StateEvent.of(owner_id, StateChange.new_game, state))
    return state


@router.get("/game/{owner_id}", response_model=StateAggregate)
async def get_game_route(owner_id: str, session: GameSession = Depends(get_session)) -> StateAggregate:
    try:
        return session.load(owner_id)
    except (ValueError, StoreUnavailable) as e:
        raise _http_error(e) from e


@router.put("/game/{owner_id}", response_model=StateAggregate)
async def save_game_route(
    owner_id: str,
    payload: StateAggregate,
    session: GameSession = Depends(get_session),
) -> StateAggregate:
    try:
        state = session.save(owner_id, payload)
    except (ValueError, StoreUnavailable) as e:
        raise _http_error(e) from e

    await hub.publish(StateEvent.of(owner_id, StateChange.saved, state))
    return state


@router.post("/game/{owner_id}/turn", response_model=TurnResponse)
async def turn_route(
    owner_id: str,
    payload: TurnRequest,
    session: GameSession = Depends(get_session),
    r: redis.Redis = Depends(get_redis),
) -> TurnResponse:
    try:
        with turn_lock(r=r, owner_id=owner_id, ttl_ms=session.settings.turn_lock_ttl_ms):
            outcome = await session.start_turn(owner_id=owner_id, action=payload.action)
    except (ValueError, StoreUnavailable) as e:
        raise _http_error(e) from e

    if outcome.provenance.persisted:
        await hub.publish(StateEvent.of(owner_id, StateChange.turn, outcome.state, outcome.provenance))
    return TurnResponse(state=outcome.state, provenance=outcome.provenance)


@router.post("/game/{owner_id}/checkpoint", response_model=StateAggregate)
async def checkpoint_route(
    owner_id: str,
    payload: CheckpointRequest,
    session: GameSession = Depends(get_session),
) -> StateAggregate:
    try:
        state = session.set_checkpoint(session.load(owner_id), reason=payload.reason)
        session.save(owner_id, state)
    except (ValueError, StoreUnavailable) as e:
        raise _http_error(e) from e

    await hub.publish(StateEvent.of(owner_id, StateChange.checkpoint, state))
    return state


@router.post("/game/{owner_id}/rewind", response_model=StateAggregate)
async def rewind_route(
    owner_id: str,
    payload: RewindRequest,
    session: GameSession = Depends(get_session),
) -> StateAggregate:
    try:
        state = session.trigger_rewind(session.load(owner_id), trigger=payload.trigger, cause=payload.cause)
        session.save(owner_id, state)
    except (ValueError, StoreUnavailable) as e:
        raise _http_error(e) from e

    await hub.publish(StateEvent.of(owner_id, StateChange.rewind, state))
    return state


@router.get("/game/{owner_id}/losses", response_model=CheckpointStatus)
async def losses_route(owner_id: str, session: GameSession = Depends(get_session)) -> CheckpointStatus:
    try:
        return session.checkpoint_status(session.load(owner_id))
    except (ValueError, StoreUnavailable) as e:
        raise _http_error(e) from e
