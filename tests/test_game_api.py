from __future__ import annotations

import fakeredis
from fakes import ScriptedGenerator, beat
from fastapi.testclient import TestClient

from natsuki_quest.api.models import Item

ClientAndRedis = tuple[TestClient, fakeredis.FakeRedis]


def test_healthcheck(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    assert client.get("/healthcheck").json() == {"status": "ok"}


def test_new_game_and_load(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    res = client.post("/game/subaru")
    assert res.status_code == 201
    state = res.json()
    assert state["current_loop"] == 1
    assert state["checkpoint"]["checkpoint"] is None
    assert state["checkpoint_reason"] == "The beginning of your journey"

    loaded = client.get("/game/subaru")
    assert loaded.status_code == 200
    assert loaded.json()["narrative"] == state["narrative"]


def test_unknown_game_is_404(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis

    assert client.get("/game/nobody").status_code == 404
    assert client.post("/game/nobody/turn", json={"action": "Hello"}).status_code == 404
    assert client.post("/game/nobody/rewind", json={}).status_code == 404
    assert client.get("/game/nobody/losses").status_code == 404


def test_turn_checkpoint_rewind_and_losses(
    client_and_redis: ClientAndRedis, generator: ScriptedGenerator
) -> None:
    client, _ = client_and_redis
    client.post("/game/subaru")

    generator.queue(
        beat(
            narrative="You follow Felt into the slums.",
            choices=["Keep going", "Turn back"],
            inventory=[
                Item(id="item_1", name="Flip Phone"),
                Item(id="item_2", name="Bag of Groceries"),
                Item(id="item_3", name="Stolen Insignia"),
            ],
            last_outcome="Chased Felt into the slums",
        )
    )
    turn = client.post("/game/subaru/turn", json={"action": "Chase the thief"})
    assert turn.status_code == 200
    body = turn.json()
    assert body["provenance"]["persisted"] is True
    assert body["state"]["narrative"] == "You follow Felt into the slums."

    losses = client.get("/game/subaru/losses").json()
    assert losses["has_checkpoint"] is True
    assert losses["checkpoint_age"] == 1
    assert [e["category"] for e in losses["losses"]] == ["inventory"]
    assert losses["losses"][0]["description"] == "1 item gained"

    cp = client.post("/game/subaru/checkpoint", json={"reason": "Found the slums"})
    assert cp.status_code == 200
    assert cp.json()["checkpoint_reason"] == "Found the slums"
    assert client.get("/game/subaru/losses").json()["losses"] == []

    rewound = client.post("/game/subaru/rewind", json={"cause": "Stabbed by Elsa"}).json()
    assert rewound["current_loop"] == 2
    assert rewound["last_death_cause"] == "Stabbed by Elsa"
    assert rewound["rbd_trigger"] == "manual"
    assert rewound["narrative"] == "You follow Felt into the slums."
    assert client.get("/game/subaru").json()["current_loop"] == 2


def test_second_rewind_without_checkpoint_returns_to_opening(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    opening = client.post("/game/subaru").json()

    first = client.post("/game/subaru/rewind", json={}).json()
    second = client.post("/game/subaru/rewind", json={}).json()

    assert first["current_loop"] == 2
    assert first["checkpoint"] is None
    assert second["current_loop"] == 3
    assert second["last_death_cause"] == "system error"
    assert second["narrative"] == opening["narrative"]


def test_put_saves_state(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    state = client.post("/game/subaru").json()
    state["current_location"] = "Royal Palace"

    res = client.put("/game/subaru", json=state)

    assert res.status_code == 200
    assert client.get("/game/subaru").json()["current_location"] == "Royal Palace"


def test_concurrent_turn_is_409(client_and_redis: ClientAndRedis) -> None:
    client, r = client_and_redis
    client.post("/game/subaru")
    r.set("lock:turn:subaru", "someone-else")

    res = client.post("/game/subaru/turn", json={"action": "Wait"})

    assert res.status_code == 409
    assert r.get("lock:turn:subaru") == "someone-else"


def test_turn_releases_lock(client_and_redis: ClientAndRedis, generator: ScriptedGenerator) -> None:
    client, r = client_and_redis
    client.post("/game/subaru")
    generator.queue(beat(), beat())

    assert client.post("/game/subaru/turn", json={"action": "Look"}).status_code == 200
    assert r.get("lock:turn:subaru") is None
    assert client.post("/game/subaru/turn", json={"action": "Look again"}).status_code == 200


def test_empty_action_is_rejected(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    client.post("/game/subaru")

    assert client.post("/game/subaru/turn", json={"action": ""}).status_code == 422


def test_ws_state_updates_broadcast(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    client.post("/game/subaru")

    with client.websocket_connect("/ws/game/subaru") as ws:
        res = client.post("/game/subaru/checkpoint", json={})
        assert res.status_code == 200

        msg = ws.receive_json()
        assert msg["type"] == "state_updated"
        assert msg["owner_id"] == "subaru"
        assert msg["change"] == "checkpoint"
        assert msg["current_loop"] == 1
        assert msg["has_checkpoint"] is True
        assert msg["rbd_trigger"] is None


def test_ws_rewind_event_reports_the_death(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    client.post("/game/subaru")

    with client.websocket_connect("/ws/game/subaru") as ws:
        client.post("/game/subaru/rewind", json={"cause": "Stabbed by Elsa"})

        msg = ws.receive_json()
        assert msg["change"] == "rewind"
        assert msg["current_loop"] == 2
        assert msg["rbd_trigger"] == "manual"
        assert msg["last_death_cause"] == "Stabbed by Elsa"
        assert msg["losses"] == 0
        assert msg["has_checkpoint"] is False


def test_ws_turn_event_carries_provenance(client_and_redis: ClientAndRedis, generator: ScriptedGenerator) -> None:
    client, _ = client_and_redis
    client.post("/game/subaru")
    generator.queue(
        beat(
            narrative="A blade flashes.",
            last_outcome="Cut down in the loot house",
            should_trigger_rewind=True,
            rewind_reason="Elsa strikes first",
        )
    )

    with client.websocket_connect("/ws/game/subaru") as ws:
        assert client.post("/game/subaru/turn", json={"action": "Open the door"}).status_code == 200

        msg = ws.receive_json()
        assert msg["change"] == "turn"
        assert msg["ai_rbd_triggered"] is True
        assert msg["rbd_trigger"] == "ai_narrative"
        assert msg["last_death_cause"] == "Cut down in the loot house"
        assert msg["current_loop"] == 2
        assert msg["generation_failed"] is False


def test_put_with_earlier_loop_is_422(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    opening = client.post("/game/subaru").json()
    client.post("/game/subaru/rewind", json={})
    client.post("/game/subaru/rewind", json={})

    res = client.put("/game/subaru", json=opening)

    assert res.status_code == 422
    assert "loop 1 over loop 3" in res.json()["detail"]
    assert client.get("/game/subaru").json()["current_loop"] == 3


def test_rewind_from_game_over_is_automatic(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    state = client.post("/game/subaru").json()
    state["is_game_over"] = True
    state["last_outcome"] = "Frozen by Puck"
    client.put("/game/subaru", json=state)

    rewound = client.post("/game/subaru/rewind", json={}).json()

    assert rewound["rbd_trigger"] == "ai_automatic"
    assert rewound["last_death_cause"] == "Frozen by Puck"
    assert rewound["is_game_over"] is False


def test_list_saves(client_and_redis: ClientAndRedis) -> None:
    client, _ = client_and_redis
    assert client.get("/game").json() == {"saves": []}
    client.post("/game/subaru")
    client.post("/game/emilia")
    client.post("/game/emilia/rewind", json={})

    saves = client.get("/game").json()["saves"]

    assert [s["owner_id"] for s in saves] == ["emilia", "subaru"]
    assert [s["current_loop"] for s in saves] == [2, 1]
    assert saves[1]["checkpoint_reason"] == "The beginning of your journey"


def test_app_info() -> None:
    from natsuki_quest.main import app

    with TestClient(app) as client:
        assert client.get("/info").json()["name"] == "natsuki-quest"
