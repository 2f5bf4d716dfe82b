QUESTIONS = [
    {"text": "What is 2 + 2?", "options": ["3", "4", "5", "6"], "correct_index": 1},
    {"text": "Capital of France?", "options": ["Paris", "Rome"], "correct_index": 0},
]


def create_game(client, **overrides):
    body = {"questions": QUESTIONS, "title": "API quiz", "time_limit": 30, **overrides}
    response = client.post("/api/games", json=body)
    assert response.status_code == 201, response.text
    return response.json()["game_pin"]


def recv_until(ws, message_type, limit=20):
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == message_type:
            return message
    raise AssertionError(f"no {message_type} message received")


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200


def test_rest_game_flow(client):
    pin = create_game(client)

    snapshot = client.get(f"/api/games/{pin}").json()
    assert snapshot["status"] == "waiting"
    assert snapshot["total_questions"] == 2

    alice = client.post(f"/api/games/{pin}/players", json={"nickname": "Alice"}).json()
    bob = client.post(f"/api/games/{pin}/players", json={"nickname": "Bob"}).json()
    assert alice["score"] == 0

    started = client.post(f"/api/games/{pin}/start").json()
    assert started["phase"] == "question_live"
    assert started["question"]["text"] == "What is 2 + 2?"
    assert started["correct_index"] is None

    response = client.post(
        f"/api/games/{pin}/answers",
        json={"player_id": alice["id"], "question_index": 0, "option_index": 1},
    )
    assert response.status_code == 201
    assert response.json()["answer"]["is_correct"] is True
    assert response.json()["score"] >= 500

    client.post(
        f"/api/games/{pin}/answers",
        json={"player_id": bob["id"], "question_index": 0, "option_index": 0},
    )

    ended = client.post(f"/api/games/{pin}/end-question").json()
    assert ended["phase"] == "question_results"
    assert ended["correct_index"] == 1
    assert ended["answer_count"] == 2

    board = client.get(f"/api/games/{pin}/leaderboard").json()
    assert [entry["nickname"] for entry in board] == ["Alice", "Bob"]
    assert [entry["rank"] for entry in board] == [1, 2]

    client.post(f"/api/games/{pin}/advance")
    client.post(f"/api/games/{pin}/end-question", json={"question_index": 1})
    final = client.post(f"/api/games/{pin}/advance").json()
    assert final["status"] == "finished"

    events = client.get(f"/api/games/{pin}/events").json()
    assert events[-1]["type"] == "game_end"
    later = client.get(f"/api/games/{pin}/events", params={"after": events[-2]["seq"]}).json()
    assert [e["type"] for e in later] == ["game_end"]


def test_create_game_from_quiz(client):
    response = client.post("/api/games", json={"quiz_id": "basics"})
    assert response.status_code == 201
    assert response.json()["title"] == "Basics"


def test_create_game_needs_questions(client):
    assert client.post("/api/games", json={}).status_code == 422
    assert client.post("/api/games", json={"questions": []}).status_code == 422
    bad = [{"text": "Q?", "options": ["only"], "correct_index": 0}]
    assert client.post("/api/games", json={"questions": bad}).status_code == 422


def test_unknown_quiz_and_game(client):
    response = client.post("/api/games", json={"quiz_id": "missing"})
    assert response.status_code == 404
    assert response.json()["error"] == "quiz_not_found"

    response = client.post("/api/games/000000/players", json={"nickname": "A"})
    assert response.status_code == 404
    assert response.json()["error"] == "game_not_found"


def test_error_codes(client):
    pin = create_game(client)

    response = client.post(f"/api/games/{pin}/start")
    assert response.status_code == 409
    assert response.json()["error"] == "no_players"

    response = client.post(f"/api/games/{pin}/players", json={"nickname": "   "})
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_nickname"

    player = client.post(f"/api/games/{pin}/players", json={"nickname": "Ann"}).json()
    response = client.post(f"/api/games/{pin}/players", json={"nickname": "Ann"})
    assert response.status_code == 409
    assert response.json()["error"] == "nickname_taken"

    response = client.post(f"/api/games/{pin}/end-question")
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"

    client.post(f"/api/games/{pin}/start")
    answer = {"player_id": player["id"], "question_index": 0, "option_index": 7}
    response = client.post(f"/api/games/{pin}/answers", json=answer)
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_option"

    answer["option_index"] = 1
    assert client.post(f"/api/games/{pin}/answers", json=answer).status_code == 201
    response = client.post(f"/api/games/{pin}/answers", json=answer)
    assert response.status_code == 409
    assert response.json()["error"] == "duplicate_answer"

    answer["question_index"] = 1
    response = client.post(f"/api/games/{pin}/answers", json=answer)
    assert response.status_code == 409
    assert response.json()["error"] == "stale_question"

    answer["player_id"] = "nobody"
    answer["question_index"] = 0
    response = client.post(f"/api/games/{pin}/answers", json=answer)
    assert response.status_code == 404
    assert response.json()["error"] == "player_not_found"


def test_delete_game(client):
    pin = create_game(client)
    assert client.delete(f"/api/games/{pin}").status_code == 204
    assert client.get(f"/api/games/{pin}").status_code == 404


def test_websocket_game(client):
    pin = create_game(client)

    with client.websocket_connect(f"/ws/host/{pin}") as host:
        snapshot = host.receive_json()
        assert snapshot["type"] == "snapshot"
        assert snapshot["players"] == []

        with client.websocket_connect(f"/ws/join/{pin}") as player:
            player.send_json({"action": "join", "nickname": "Zoe"})
            joined = player.receive_json()
            assert joined["type"] == "joined_game"
            player_id = joined["player"]["id"]
            assert player.receive_json()["type"] == "snapshot"

            announced = recv_until(host, "player_joined")
            assert announced["player"]["nickname"] == "Zoe"

            host.send_json({"action": "start_quiz"})
            question = recv_until(host, "question_start")
            assert recv_until(player, "question_start")["seq"] == question["seq"]
            assert "correct_index" not in question["question"]

            player.send_json({"action": "submit_answer", "question_index": 0, "answer_index": 1})
            result = recv_until(player, "answer_result")
            assert result["is_correct"] is True
            assert result["new_score"] == result["points"]

            answered = recv_until(host, "player_answered")
            assert answered["player_id"] == player_id
            assert answered["answer_count"] == 1

            player.send_json({"action": "submit_answer", "question_index": 0, "answer_index": 2})
            assert recv_until(player, "error")["error"] == "duplicate_answer"

            host.send_json({"action": "end_question", "question_index": 0})
            ended = recv_until(host, "question_end")
            assert ended["correct_index"] == 1
            assert ended["trigger"] == "host"
            assert recv_until(player, "question_end")["seq"] == ended["seq"]

            host.send_json({"action": "dance"})
            assert recv_until(host, "error")["error"] == "unknown_action"


def test_player_rejoins_with_id(client):
    pin = create_game(client)
    player = client.post(f"/api/games/{pin}/players", json={"nickname": "Max"}).json()

    with client.websocket_connect(f"/ws/join/{pin}") as ws:
        ws.send_json({"action": "submit_answer", "question_index": 0, "answer_index": 0})
        assert ws.receive_json()["error"] == "not_joined"
        ws.send_json({"action": "rejoin", "player_id": player["id"]})
        joined = ws.receive_json()
        assert joined["player"]["nickname"] == "Max"
        snapshot = ws.receive_json()
        assert [p["nickname"] for p in snapshot["players"]] == ["Max"]


def test_player_join_errors_over_websocket(client):
    pin = create_game(client)
    client.post(f"/api/games/{pin}/players", json={"nickname": "Taken"})

    with client.websocket_connect(f"/ws/join/{pin}") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["error"] == "invalid_message"
        ws.send_json({"action": "join", "nickname": "Taken"})
        assert ws.receive_json()["error"] == "nickname_taken"
        ws.send_json({"action": "join", "nickname": "Fresh"})
        assert ws.receive_json()["type"] == "joined_game"


def test_second_host_is_refused(client):
    pin = create_game(client)
    with client.websocket_connect(f"/ws/host/{pin}") as first:
        first.receive_json()
        with client.websocket_connect(f"/ws/host/{pin}") as second:
            assert second.receive_json()["error"] == "host_connected"


def test_host_of_unknown_game(client):
    with client.websocket_connect("/ws/host/000000") as ws:
        assert ws.receive_json()["error"] == "game_not_found"


def test_connections_track_sockets(client):
    pin = create_game(client)
    assert client.get(f"/api/games/{pin}/connections").json() == {
        "host_connected": False,
        "player_ids": [],
    }
    with client.websocket_connect(f"/ws/host/{pin}") as host:
        host.receive_json()
        with client.websocket_connect(f"/ws/join/{pin}") as player:
            player.send_json({"action": "join", "nickname": "Ivy"})
            player_id = player.receive_json()["player"]["id"]
            player.receive_json()
            connections = client.get(f"/api/games/{pin}/connections").json()
            assert connections == {"host_connected": True, "player_ids": [player_id]}


def test_host_receives_heartbeat_pings(client, manager):
    manager.heartbeat_interval = 0.05
    pin = create_game(client)
    with client.websocket_connect(f"/ws/host/{pin}") as host:
        assert host.receive_json()["type"] == "snapshot"
        assert recv_until(host, "ping") == {"type": "ping"}
