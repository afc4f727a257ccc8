import pytest
from fastapi.testclient import TestClient

from app.config import get_settings
from app.database import get_db
from app.main import app
from app.routers.chats import get_conversation_store
from app.routers.tutor import get_generator
from app.services.personas import SOCRATIC


@pytest.fixture
def client(session_factory, store, generator):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_conversation_store] = lambda: store
    app.dependency_overrides[get_generator] = lambda: generator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _signup(client, email="ada@example.com", password="secret123"):
    res = client.post("/api/auth/signup", json={"email": email, "password": password, "full_name": "Ada"})
    assert res.status_code == 201
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def test_root(client):
    assert client.get("/").json()["message"] == "Tutor API"


def test_personas_listed(client):
    keys = [p["key"] for p in client.get("/api/tutor/personas").json()]
    assert keys == ["socratic", "feynman"]


def test_anonymous_tutor_exchange_creates_owned_chat(client, generator):
    generator.replies = ["What do you think a base case is for?"]
    res = client.post("/api/tutor/socratic/messages", json={"message": "I want to learn about recursion"})
    assert res.status_code == 200
    body = res.json()
    assert body["title"] == "I want to learn about recursion"
    assert [m["is_user"] for m in body["messages"]] == [True, False]
    assert body["reply"]["content"] == "What do you think a base case is for?"
    assert body["reply"]["message_type"] == "question"
    assert body["learning_context"]["topic"] == "general inquiry"
    assert client.cookies.get(get_settings().anonymous_cookie_name, "").startswith("anon-")

    chats = client.get("/api/chats").json()
    assert len(chats) == 1
    assert chats[0]["id"] == body["chat_id"]
    assert chats[0]["message_count"] == 2

    messages = client.get(f"/api/chats/{body['chat_id']}/messages").json()
    assert [m["id"] for m in messages] == [m["id"] for m in body["messages"]]


def test_follow_up_continues_same_chat(client):
    first = client.post("/api/tutor/feynman/messages", json={"message": "Entropy is disorder"}).json()
    second = client.post(
        "/api/tutor/feynman/messages",
        json={"message": "Things spread out", "chat_id": first["chat_id"]},
    ).json()
    assert second["chat_id"] == first["chat_id"]
    assert len(second["messages"]) == 4
    assert second["title"] == "Entropy is disorder"
    assert second["learning_context"] is None


def test_generation_failure_returns_fallback_reply(client, generator):
    generator.error = RuntimeError("model unavailable")
    res = client.post("/api/tutor/socratic/messages", json={"message": "Explain closures"})
    assert res.status_code == 200
    assert res.json()["reply"]["content"] == SOCRATIC.fallback_message


def test_unknown_persona_is_404(client):
    res = client.post("/api/tutor/aristotle/messages", json={"message": "hi"})
    assert res.status_code == 404


def test_blank_message_is_rejected(client):
    assert client.post("/api/tutor/socratic/messages", json={"message": "   "}).status_code == 400
    assert client.post("/api/tutor/socratic/messages", json={"message": ""}).status_code == 422


def test_other_owner_cannot_read_chat(client):
    chat_id = client.post("/api/tutor/socratic/messages", json={"message": "hello"}).json()["chat_id"]
    client.cookies.clear()
    assert client.get(f"/api/chats/{chat_id}/messages").status_code == 403
    res = client.post("/api/tutor/socratic/messages", json={"message": "hi", "chat_id": chat_id})
    assert res.status_code == 403


def test_missing_chat_is_404(client):
    assert client.get("/api/chats/nope/messages").status_code == 404
    res = client.post("/api/tutor/socratic/messages", json={"message": "hi", "chat_id": "nope"})
    assert res.status_code == 404


def test_create_rename_delete_chat(client):
    created = client.post("/api/chats", json={"persona": "socratic"})
    assert created.status_code == 201
    chat_id = created.json()["id"]
    assert created.json()["title"] == "New Learning Session"

    renamed = client.patch(f"/api/chats/{chat_id}", json={"title": "Recursion"})
    assert renamed.json()["title"] == "Recursion"
    assert client.get(f"/api/chats/{chat_id}").json()["title"] == "Recursion"

    assert client.delete(f"/api/chats/{chat_id}").status_code == 204
    assert client.get(f"/api/chats/{chat_id}").status_code == 404
    assert client.get("/api/chats").json() == []


def test_create_chat_rejects_unknown_persona(client):
    assert client.post("/api/chats", json={"persona": "plato"}).status_code == 400


def test_list_chats_filters_by_persona(client):
    client.post("/api/chats", json={"persona": "socratic"})
    client.post("/api/chats", json={"persona": "feynman"})
    chats = client.get("/api/chats", params={"persona": "feynman"}).json()
    assert [c["persona"] for c in chats] == ["feynman"]


def test_learning_context_put_and_get(client):
    chat_id = client.post("/api/chats", json={"persona": "socratic"}).json()["id"]
    assert client.get(f"/api/chats/{chat_id}/learning-context").json() is None

    res = client.put(
        f"/api/chats/{chat_id}/learning-context",
        json={"topic": "Python", "userLevel": "advanced", "previousQuestions": ["q"], "currentFocus": "Python"},
    )
    assert res.status_code == 200
    context = client.get(f"/api/chats/{chat_id}/learning-context").json()
    assert context["topic"] == "Python"
    assert context["userLevel"] == "advanced"
    assert context["previousQuestions"] == ["q"]
    assert context["updatedAt"] is not None


def test_chat_stats(client):
    client.post("/api/tutor/socratic/messages", json={"message": "teach me python"})
    stats = client.get("/api/chats/stats").json()
    assert stats["total_chats"] == 1
    assert stats["total_messages"] == 2
    assert stats["popular_topics"] == [{"topic": "Python", "count": 1}]


def test_signup_login_and_me(client):
    headers = _signup(client)
    me = client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "ada@example.com"

    ok = client.post("/api/auth/login", json={"email": "ADA@example.com", "password": "secret123"})
    assert ok.status_code == 200
    bad = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "wrong"})
    assert bad.status_code == 401


def test_signup_validation(client):
    _signup(client)
    dup = client.post("/api/auth/signup", json={"email": "ada@example.com", "password": "secret123"})
    assert dup.status_code == 400
    short = client.post("/api/auth/signup", json={"email": "bob@example.com", "password": "123"})
    assert short.status_code == 400


def test_me_requires_token(client):
    assert client.get("/api/auth/me").status_code == 401


def test_signed_in_user_owns_chats(client):
    headers = _signup(client)
    user_id = client.get("/api/auth/me", headers=headers).json()["id"]
    body = client.post("/api/tutor/socratic/messages", json={"message": "hello"}, headers=headers).json()
    chats = client.get("/api/chats", headers=headers).json()
    assert [c["id"] for c in chats] == [body["chat_id"]]
    assert chats[0]["user_id"] == user_id


def test_chat_of_another_persona_is_rejected(client):
    chat_id = client.post("/api/tutor/feynman/messages", json={"message": "Entropy is disorder"}).json()["chat_id"]
    res = client.post("/api/tutor/socratic/messages", json={"message": "I know python", "chat_id": chat_id})
    assert res.status_code == 409
    assert client.get(f"/api/chats/{chat_id}/learning-context").json() is None
    assert len(client.get(f"/api/chats/{chat_id}/messages").json()) == 2


def test_chat_without_persona_can_be_continued(client):
    chat_id = client.post("/api/chats", json={}).json()["id"]
    res = client.post("/api/tutor/socratic/messages", json={"message": "hello", "chat_id": chat_id})
    assert res.status_code == 200
    assert res.json()["chat_id"] == chat_id


def test_empty_model_reply_uses_persona_default(client, generator):
    generator.replies = [""]
    body = client.post("/api/tutor/socratic/messages", json={"message": "teach me python"}).json()
    assert body["reply"]["content"] == SOCRATIC.empty_reply
    assert body["learning_context"]["topic"] == "Python"


def test_stream_of_missing_chat_is_404(client):
    assert client.get("/api/chats/nope/messages/stream").status_code == 404
