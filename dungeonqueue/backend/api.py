"""FastAPI endpoints for queueing, parties, instances and websocket notifications."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .config import BackendSettings, load_settings
from .models import Party, PartyMember, PartyStateError, QueueStoreError
from .profiles import ProfileStore
from .service import GroupDispatcher
from .wiring import Backend, build_backend

logger = logging.getLogger(__name__)


class MemberPayload(BaseModel):
    participant_id: str = Field(min_length=1)
    character_id: str = Field(min_length=1)
    raw_role: str = Field(default="", max_length=100)
    power_score: int = Field(default=0, ge=0)


class JoinRequest(MemberPayload):
    content_type: str = Field(default="dungeon", min_length=1)
    party_id: str | None = None
    difficulty: str | None = None


class JoinResponse(BaseModel):
    entry_id: str
    already_queued: bool
    role: str
    groups_formed: int


class LeaveResponse(BaseModel):
    left: bool


class QueueStatusResponse(BaseModel):
    in_queue: bool
    role: str | None = None
    content_type: str | None = None
    queued_at: datetime | None = None
    role_counts: dict[str, int] = Field(default_factory=dict)
    estimated_wait_seconds: int | None = None


class CreatePartyRequest(BaseModel):
    leader: MemberPayload


class PartyResponse(BaseModel):
    party_id: str
    leader_id: str
    status: str
    members: list[MemberPayload]
    content_type: str | None = None


class PartyQueueRequest(BaseModel):
    content_type: str = Field(default="dungeon", min_length=1)
    difficulty_hint: str | None = None


class PartyQueueResponse(BaseModel):
    entry_ids: list[str]
    status: str


class CancelPartyQueueRequest(BaseModel):
    requested_by: str = Field(min_length=1)


class CancelPartyQueueResponse(BaseModel):
    removed: int


class InstanceResponse(BaseModel):
    instance: dict[str, Any]


class MatchmakingRunResponse(BaseModel):
    groups_formed: int


class ChannelWebSocketHub:
    """Websocket fan-out per channel; usable as a BroadcastNotifier from worker threads."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        self._loop: asyncio.AbstractEventLoop | None = None

    async def connect(self, channel_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        self._connections[channel_id].add(websocket)

    def disconnect(self, channel_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(channel_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(channel_id, None)

    async def send_event(self, websocket: WebSocket, event: dict[str, Any]) -> None:
        await websocket.send_json(event)

    async def broadcast(self, channel_id: str, event: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections.get(channel_id, set())):
            try:
                await self.send_event(websocket, event)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(channel_id=channel_id, websocket=websocket)

    def notify(self, channel_id: str, event: dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or not self._connections.get(channel_id):
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(channel_id, event), loop)


def _party_response(party: Party) -> PartyResponse:
    return PartyResponse(
        party_id=party.party_id,
        leader_id=party.leader_id,
        status=party.status.value,
        members=[
            MemberPayload(
                participant_id=member.participant_id,
                character_id=member.character_id,
                raw_role=member.raw_role,
                power_score=member.power_score,
            )
            for member in party.members
        ],
        content_type=party.content_type,
    )


def _party_member(payload: MemberPayload) -> PartyMember:
    return PartyMember(
        participant_id=payload.participant_id,
        character_id=payload.character_id,
        raw_role=payload.raw_role,
        power_score=payload.power_score,
    )


def create_app(
    settings: BackendSettings | None = None,
    profiles: ProfileStore | None = None,
    dispatcher: GroupDispatcher | None = None,
) -> FastAPI:
    backend_settings = settings if settings is not None else load_settings()
    websocket_hub = ChannelWebSocketHub()
    backend: Backend = build_backend(
        backend_settings,
        notifier=websocket_hub,
        profiles=profiles,
        dispatcher=dispatcher,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if backend.sweeper is not None:
            backend.sweeper.start()
        try:
            yield
        finally:
            backend.shutdown()

    app = FastAPI(title="Dungeon Queue API", version="0.1.0", lifespan=lifespan)
    app.state.websocket_hub = websocket_hub
    app.state.backend = backend
    service = backend.service
    parties = backend.party_store

    @app.post("/api/queue", response_model=JoinResponse)
    def join_queue(payload: JoinRequest) -> JoinResponse:
        try:
            result = service.join(
                participant_id=payload.participant_id,
                character_id=payload.character_id,
                raw_role=payload.raw_role,
                power_score=payload.power_score,
                content_type=payload.content_type,
                party_id=payload.party_id,
                difficulty=payload.difficulty,
            )
        except KeyError:
            raise HTTPException(status_code=404, detail="Party not found")
        except PartyStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except QueueStoreError:
            raise HTTPException(status_code=503, detail="Queue unavailable")
        return JoinResponse(
            entry_id=result.entry.entry_id,
            already_queued=result.already_queued,
            role=result.entry.normalized_role.value,
            groups_formed=result.groups_formed,
        )

    @app.delete("/api/queue/{participant_id}", response_model=LeaveResponse)
    def leave_queue(participant_id: str) -> LeaveResponse:
        try:
            left = service.leave(participant_id)
        except QueueStoreError:
            raise HTTPException(status_code=503, detail="Queue unavailable")
        if not left:
            raise HTTPException(status_code=404, detail="Not in queue")
        return LeaveResponse(left=True)

    @app.get("/api/queue/status", response_model=QueueStatusResponse)
    def queue_status(participant_id: str = Query(min_length=1)) -> QueueStatusResponse:
        status = service.queue_status(participant_id)
        if status.entry is None:
            return QueueStatusResponse(in_queue=False)
        return QueueStatusResponse(
            in_queue=True,
            role=status.entry.normalized_role.value,
            content_type=status.entry.content_type,
            queued_at=status.entry.queued_at,
            role_counts=status.role_counts,
            estimated_wait_seconds=status.estimated_wait_seconds,
        )

    @app.post("/api/parties", response_model=PartyResponse)
    def create_party(payload: CreatePartyRequest) -> PartyResponse:
        return _party_response(parties.create_party(_party_member(payload.leader)))

    @app.get("/api/parties/{party_id}", response_model=PartyResponse)
    def get_party(party_id: str) -> PartyResponse:
        party = parties.get_party(party_id)
        if party is None:
            raise HTTPException(status_code=404, detail="Party not found")
        return _party_response(party)

    @app.post("/api/parties/{party_id}/members", response_model=PartyResponse)
    def add_party_member(party_id: str, payload: MemberPayload) -> PartyResponse:
        try:
            return _party_response(parties.add_member(party_id, _party_member(payload)))
        except KeyError:
            raise HTTPException(status_code=404, detail="Party not found")
        except PartyStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

    @app.delete("/api/parties/{party_id}/members/{participant_id}", response_model=PartyResponse)
    def remove_party_member(party_id: str, participant_id: str) -> PartyResponse:
        try:
            return _party_response(parties.remove_member(party_id, participant_id))
        except KeyError:
            raise HTTPException(status_code=404, detail="Party not found")
        except PartyStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

    @app.post("/api/parties/{party_id}/queue", response_model=PartyQueueResponse)
    def queue_party(party_id: str, payload: PartyQueueRequest) -> PartyQueueResponse:
        try:
            entries = service.join_party(party_id, payload.content_type, payload.difficulty_hint)
        except KeyError:
            raise HTTPException(status_code=404, detail="Party not found")
        except PartyStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except QueueStoreError:
            raise HTTPException(status_code=503, detail="Queue unavailable")
        party = parties.get_party(party_id)
        return PartyQueueResponse(
            entry_ids=[entry.entry_id for entry in entries],
            status=party.status.value if party is not None else "unknown",
        )

    @app.post("/api/parties/{party_id}/cancel-queue", response_model=CancelPartyQueueResponse)
    def cancel_party_queue(party_id: str, payload: CancelPartyQueueRequest) -> CancelPartyQueueResponse:
        try:
            removed = service.cancel_party_queue(party_id, payload.requested_by)
        except KeyError:
            raise HTTPException(status_code=404, detail="Party not found")
        except PartyStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except QueueStoreError:
            raise HTTPException(status_code=503, detail="Queue unavailable")
        return CancelPartyQueueResponse(removed=removed)

    @app.get("/api/instances/{instance_id}", response_model=InstanceResponse)
    def get_instance(instance_id: str) -> InstanceResponse:
        document = backend.instance_store.get_instance(instance_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Instance not found")
        return InstanceResponse(instance=document)

    @app.post("/api/matchmaking/run", response_model=MatchmakingRunResponse)
    def run_matchmaking() -> MatchmakingRunResponse:
        try:
            return MatchmakingRunResponse(groups_formed=service.run_all_passes())
        except QueueStoreError:
            logger.exception("Manual matchmaking run failed")
            raise HTTPException(status_code=503, detail="Queue unavailable")

    @app.websocket("/ws/channels/{channel_id}")
    async def channel_ws(websocket: WebSocket, channel_id: str) -> None:
        await websocket_hub.connect(channel_id=channel_id, websocket=websocket)
        await websocket_hub.send_event(websocket, {"type": "subscribed", "channelId": channel_id})
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(channel_id=channel_id, websocket=websocket)

    return app
