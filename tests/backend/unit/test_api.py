import pytest

fastapi = pytest.importorskip("fastapi")
pytest.importorskip("httpx")
from fastapi.testclient import TestClient

from dungeonqueue.backend.api import create_app
from dungeonqueue.backend.config import BackendSettings
from dungeonqueue.backend.models import CharacterSnapshot
from dungeonqueue.backend.profiles import InMemoryProfileStore
from dungeonqueue.backend.service import InlineDispatcher


def _settings() -> BackendSettings:
    return BackendSettings(
        database_url=None,
        host="127.0.0.1",
        port=8000,
        queue_ttl_seconds=1800,
        sweep_interval_seconds=0,
        io_timeout_seconds=5,
        provision_workers=1,
        log_level="INFO",
    )


def _app(profiles: InMemoryProfileStore | None = None):
    return create_app(settings=_settings(), profiles=profiles or InMemoryProfileStore(), dispatcher=InlineDispatcher())


def _join_payload(participant_id: str, raw_role: str, **extra) -> dict:
    payload = {
        "participant_id": participant_id,
        "character_id": f"char-{participant_id}",
        "raw_role": raw_role,
        "power_score": 120,
    }
    payload.update(extra)
    return payload


def _member(participant_id: str, raw_role: str) -> dict:
    return {"participant_id": participant_id, "character_id": f"char-{participant_id}", "raw_role": raw_role}


def test_post_queue_returns_entry_and_normalized_role() -> None:
    client = TestClient(_app())

    response = client.post("/api/queue", json=_join_payload("p1", "Paladin"))

    assert response.status_code == 200
    data = response.json()
    assert data["entry_id"]
    assert data["role"] == "tank"
    assert data["already_queued"] is False
    assert data["groups_formed"] == 0


def test_post_queue_twice_reports_already_queued() -> None:
    client = TestClient(_app())

    first = client.post("/api/queue", json=_join_payload("p1", "dps")).json()
    second = client.post("/api/queue", json=_join_payload("p1", "dps")).json()

    assert second["already_queued"] is True
    assert second["entry_id"] == first["entry_id"]


def test_post_queue_validates_payload() -> None:
    client = TestClient(_app())

    response = client.post("/api/queue", json={"participant_id": "", "character_id": "c"})

    assert response.status_code == 422


def test_queue_status_reports_wait_estimate() -> None:
    client = TestClient(_app())
    client.post("/api/queue", json=_join_payload("tank", "tank"))
    client.post("/api/queue", json=_join_payload("healer", "cleric"))

    response = client.get("/api/queue/status", params={"participant_id": "healer"})

    assert response.status_code == 200
    data = response.json()
    assert data["in_queue"] is True
    assert data["role"] == "healer"
    assert data["role_counts"] == {"tank": 1, "healer": 1, "dps": 0}
    assert data["estimated_wait_seconds"] == 30
    assert client.get("/api/queue/status", params={"participant_id": "nobody"}).json()["in_queue"] is False


def test_delete_queue_entry_and_missing_entry() -> None:
    client = TestClient(_app())
    client.post("/api/queue", json=_join_payload("p1", "dps"))

    assert client.delete("/api/queue/p1").json() == {"left": True}
    assert client.delete("/api/queue/p1").status_code == 404


def test_full_group_creates_instance_with_character_data() -> None:
    profiles = InMemoryProfileStore(
        [
            CharacterSnapshot(
                character_id="char-t",
                participant_id="t",
                name="Brakka",
                raw_role="warden",
                level=17,
                current_hp=140,
                max_hp=150,
            )
        ]
    )
    app = _app(profiles)
    client = TestClient(app)

    for participant_id, role in [("t", "warden"), ("h", "shaman"), ("d1", "mage"), ("d2", "rogue")]:
        client.post("/api/queue", json=_join_payload(participant_id, role))
    last = client.post("/api/queue", json=_join_payload("d3", "hunter")).json()

    assert last["groups_formed"] == 1
    instance_id = profiles.active_instance("char-t")
    assert instance_id is not None

    response = client.get(f"/api/instances/{instance_id}")

    assert response.status_code == 200
    instance = response.json()["instance"]
    assert instance["status"] == "active"
    assert instance["participants"][0]["name"] == "Brakka"
    assert instance["participants"][1]["isPlaceholder"] is True
    assert client.get("/api/instances/unknown").status_code == 404


def test_party_flow_through_http() -> None:
    client = TestClient(_app())

    party = client.post("/api/parties", json={"leader": _member("lead", "tank")}).json()
    party_id = party["party_id"]
    assert party["status"] == "forming"

    for participant_id, role in [("heal", "healer"), ("dd1", "dps"), ("dd2", "dps")]:
        response = client.post(f"/api/parties/{party_id}/members", json=_member(participant_id, role))
        assert response.status_code == 200

    queued = client.post(f"/api/parties/{party_id}/queue", json={"content_type": "dungeon"})
    assert queued.status_code == 200
    assert len(queued.json()["entry_ids"]) == 4
    assert queued.json()["status"] == "queued"

    locked = client.post(f"/api/parties/{party_id}/members", json=_member("late", "dps"))
    assert locked.status_code == 409

    client.post("/api/queue", json=_join_payload("solo", "dps"))

    assert client.get(f"/api/parties/{party_id}").json()["status"] == "in_instance"


def test_party_cancel_queue_requires_leader() -> None:
    client = TestClient(_app())
    party_id = client.post("/api/parties", json={"leader": _member("lead", "tank")}).json()["party_id"]
    client.post(f"/api/parties/{party_id}/members", json=_member("heal", "healer"))
    client.post(f"/api/parties/{party_id}/queue", json={})

    forbidden = client.post(f"/api/parties/{party_id}/cancel-queue", json={"requested_by": "heal"})
    allowed = client.post(f"/api/parties/{party_id}/cancel-queue", json={"requested_by": "lead"})

    assert forbidden.status_code == 409
    assert allowed.json() == {"removed": 2}
    assert client.get(f"/api/parties/{party_id}").json()["status"] == "forming"


def test_unknown_party_returns_404() -> None:
    client = TestClient(_app())

    assert client.get("/api/parties/missing").status_code == 404
    assert client.post("/api/parties/missing/queue", json={}).status_code == 404
    assert client.post("/api/queue", json=_join_payload("p1", "dps", party_id="missing")).status_code == 404


def test_remove_party_member() -> None:
    client = TestClient(_app())
    party_id = client.post("/api/parties", json={"leader": _member("lead", "tank")}).json()["party_id"]
    client.post(f"/api/parties/{party_id}/members", json=_member("heal", "healer"))

    response = client.delete(f"/api/parties/{party_id}/members/heal")

    assert response.status_code == 200
    assert [member["participant_id"] for member in response.json()["members"]] == ["lead"]
    assert client.delete(f"/api/parties/{party_id}/members/lead").status_code == 409


def test_manual_matchmaking_run_returns_group_count() -> None:
    client = TestClient(_app())

    response = client.post("/api/matchmaking/run")

    assert response.status_code == 200
    assert response.json() == {"groups_formed": 0}


def test_websocket_confirms_subscription() -> None:
    client = TestClient(_app())

    with client.websocket_connect("/ws/channels/queue:dungeon") as websocket:
        message = websocket.receive_json()

    assert message == {"type": "subscribed", "channelId": "queue:dungeon"}


def test_websocket_receives_queue_events() -> None:
    with TestClient(_app()) as client:
        with client.websocket_connect("/ws/channels/queue:dungeon") as websocket:
            websocket.receive_json()

            client.post("/api/queue", json=_join_payload("p1", "bard"))

            message = websocket.receive_json()

    assert message["type"] == "participant_queued"
    assert message["participantId"] == "p1"
    assert message["role"] == "healer"
