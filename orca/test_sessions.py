def test_create_session_defaults_title(client, login_as):
    headers = login_as("a@example.com")

    resp = client.post("/sessions", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["title"] == "New Chat"
    assert isinstance(body["chat_id"], int)


def test_create_session_with_title(client, login_as):
    headers = login_as("a@example.com")

    resp = client.post("/sessions", json={"title": "Trip plans"}, headers=headers)
    assert resp.json()["title"] == "Trip plans"


def test_list_sessions_newest_first_and_only_own(client, login_as):
    a = login_as("a@example.com")
    b = login_as("b@example.com")
    first = client.post("/sessions", json={"title": "first"}, headers=a).json()["chat_id"]
    second = client.post("/sessions", json={"title": "second"}, headers=a).json()["chat_id"]
    client.post("/sessions", json={"title": "not mine"}, headers=b)

    resp = client.get("/sessions", headers=a)
    assert resp.status_code == 200
    assert [s["chat_id"] for s in resp.json()] == [second, first]


def test_rename_session(client, login_as):
    a = login_as("a@example.com")
    b = login_as("b@example.com")
    session_id = client.post("/sessions", headers=a).json()["chat_id"]

    assert client.patch(f"/sessions/{session_id}", json={"title": "Renamed"}, headers=b).status_code == 403
    resp = client.patch(f"/sessions/{session_id}", json={"title": "Renamed"}, headers=a)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Renamed"
    assert client.get("/sessions", headers=a).json()[0]["title"] == "Renamed"


def test_delete_session_works_correctly(client, login_as, store):
    """
    Tests the full lifecycle of the delete endpoint, messages included.
    """
    headers = login_as("a@example.com")
    session_id_to_delete = client.post("/sessions", headers=headers).json()["chat_id"]
    client.post("/chat-turn", json={"sessionId": session_id_to_delete, "message": "hi"}, headers=headers)

    resp_delete = client.delete(f"/sessions/{session_id_to_delete}", headers=headers)

    assert resp_delete.status_code == 200
    assert resp_delete.json() == {"detail": "Session and messages deleted."}
    assert list(store.list_ordered(session_id_to_delete)) == []

    resp_history = client.get(f"/sessions/{session_id_to_delete}/messages", headers=headers)
    assert resp_history.status_code == 404


def test_delete_session_owner_only(client, login_as):
    a = login_as("a@example.com")
    b = login_as("b@example.com")
    session_id = client.post("/sessions", headers=a).json()["chat_id"]

    assert client.delete(f"/sessions/{session_id}", headers=b).status_code == 403
    assert client.get(f"/sessions/{session_id}/messages", headers=a).status_code == 200


def test_ping(client):
    resp = client.get("/ping")
    assert resp.status_code == 200
    assert resp.json() == "pong"
