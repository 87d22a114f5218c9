"""
Live channel tests: handshake, rooms, and broadcast of message:new /
conversation:update for both socket and REST sends.
"""
import json

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError
from starlette.websockets import WebSocketDisconnect

from conftest import auth_headers, token_for
from marketchat.core.config import settings
from marketchat.repositories.conversation_repository import ConversationRepository
from marketchat.repositories.message_repository import MessageRepository


def ws_url(user) -> str:
    return f"/api/chat/ws?token={token_for(user)}"


def open_conversation(client: TestClient, user, participant) -> str:
    response = client.post(
        "/api/chat/conversations",
        json={"participantId": str(participant["_id"])},
        headers=auth_headers(user),
    )
    return response.json()["conversation"]["_id"]


def sync(ws) -> None:
    """
    Round-trip a frame that is answered only to this socket.

    Frames on one socket are handled in order, so once the reply arrives
    every earlier join/leave on the socket has been applied.
    """
    ws.send_json({"event": "message:send", "data": {"conversationId": str(ObjectId()), "content": "ping"}})
    reply = ws.receive_json()
    assert reply == {"event": "message:error", "data": {"message": "Conversation not found"}}


class TestHandshake:

    def test_missing_token_is_rejected(self, test_client: TestClient, seed_test_users):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/api/chat/ws"):
                pass
        assert exc_info.value.code == 4401

    def test_invalid_token_is_rejected(self, test_client: TestClient, seed_test_users):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/api/chat/ws?token=a.b.c"):
                pass
        assert exc_info.value.code == 4401

    def test_unknown_subject_is_rejected(self, test_client: TestClient, seed_test_users):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect(ws_url({"_id": ObjectId()})):
                pass
        assert exc_info.value.code == 4404

    def test_connection_ready(self, test_client: TestClient, seed_test_users):
        u1 = seed_test_users[0]
        with test_client.websocket_connect(ws_url(u1)) as ws:
            assert ws.receive_json() == {"event": "connection:ready", "data": {"userId": str(u1["_id"])}}

    def test_bearer_header_is_accepted(self, test_client: TestClient, seed_test_users):
        u1 = seed_test_users[0]
        with test_client.websocket_connect("/api/chat/ws", headers=auth_headers(u1)) as ws:
            assert ws.receive_json()["event"] == "connection:ready"


class TestPresence:

    def test_presence_follows_connection_lifetime(self, test_client: TestClient, seed_test_users):
        u1, u2, _ = seed_test_users
        presence_url = f"/api/chat/presence/{u2['_id']}"

        with test_client.websocket_connect(ws_url(u2)) as ws:
            ws.receive_json()
            assert test_client.get(presence_url, headers=auth_headers(u1)).json()["online"] is True

        assert test_client.get(presence_url, headers=auth_headers(u1)).json()["online"] is False

    def test_disconnect_keeps_persisted_messages(self, test_client: TestClient, seed_test_users):
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u1)) as ws:
            ws.receive_json()
            ws.send_json({"event": "conversation:join", "data": conversation_id})
            ws.send_json({"event": "message:send", "data": {"conversationId": conversation_id, "content": "bye"}})
            assert ws.receive_json()["event"] == "message:new"
            assert ws.receive_json()["event"] == "conversation:update"

        history = test_client.get(f"/api/chat/conversations/{conversation_id}/messages", headers=auth_headers(u1))
        assert [m["content"] for m in history.json()["messages"]] == ["bye"]


class TestMessaging:

    def test_joined_member_receives_socket_send(self, test_client: TestClient, seed_test_users):
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u1)) as ws1, test_client.websocket_connect(ws_url(u2)) as ws2:
            ws1.receive_json()
            ws2.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)

            ws1.send_json({"event": "message:send", "data": {"conversationId": conversation_id, "content": "Hello"}})

            new = ws2.receive_json()
            assert new["event"] == "message:new"
            assert new["data"]["conversationId"] == conversation_id
            message = new["data"]["message"]
            assert message["content"] == "Hello"
            assert message["sender"]["_id"] == str(u1["_id"])
            assert message["sender"]["name"] == "Test User 1"
            assert message["readBy"] == [str(u1["_id"])]

            update = ws2.receive_json()
            assert update["event"] == "conversation:update"
            assert update["data"]["conversationId"] == conversation_id
            assert update["data"]["lastMessage"]["content"] == "Hello"
            assert update["data"]["lastMessage"]["sender"] == str(u1["_id"])
            assert update["data"]["updatedAt"]

            # sender did not join the room, so its next frame is its own reply
            sync(ws1)

    def test_rest_send_reaches_joined_socket(self, test_client: TestClient, seed_test_users):
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u2)) as ws2:
            ws2.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)

            response = test_client.post(
                f"/api/chat/conversations/{conversation_id}/messages",
                json={"content": "sent over http"},
                headers=auth_headers(u1),
            )
            assert response.status_code == 201

            new = ws2.receive_json()
            assert new["event"] == "message:new"
            assert new["data"]["message"] == response.json()["message"]
            assert ws2.receive_json()["event"] == "conversation:update"

    def test_binary_frames_are_handled_like_text(self, test_client: TestClient, seed_test_users):
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u2)) as ws2:
            ws2.receive_json()
            ws2.send_bytes(json.dumps({"event": "conversation:join", "data": conversation_id}).encode())
            sync(ws2)

            test_client.post(
                f"/api/chat/conversations/{conversation_id}/messages",
                json={"content": "binary join"},
                headers=auth_headers(u1),
            )

            assert ws2.receive_json()["event"] == "message:new"
            assert ws2.receive_json()["event"] == "conversation:update"

    def test_one_event_pair_per_send(self, test_client: TestClient, seed_test_users):
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u2)) as ws2:
            ws2.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)

            for text in ("one", "two"):
                test_client.post(
                    f"/api/chat/conversations/{conversation_id}/messages",
                    json={"content": text},
                    headers=auth_headers(u1),
                )

            frames = [ws2.receive_json() for _ in range(4)]
            assert [f["event"] for f in frames] == ["message:new", "conversation:update"] * 2
            assert [frames[0]["data"]["message"]["content"], frames[2]["data"]["message"]["content"]] == ["one", "two"]
            sync(ws2)

    def test_unjoined_and_left_sockets_receive_nothing(self, test_client: TestClient, seed_test_users):
        u1, u2, u3 = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u2)) as ws2, test_client.websocket_connect(ws_url(u3)) as ws3:
            ws2.receive_json()
            ws3.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            ws2.send_json({"event": "conversation:leave", "data": conversation_id})
            sync(ws2)

            test_client.post(
                f"/api/chat/conversations/{conversation_id}/messages",
                json={"content": "nobody listening"},
                headers=auth_headers(u1),
            )

            sync(ws2)
            sync(ws3)

    def test_non_participant_send_reports_error_to_sender_only(self, test_client: TestClient, seed_test_users, test_db):
        u1, u2, u3 = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u2)) as ws2, test_client.websocket_connect(ws_url(u3)) as ws3:
            ws2.receive_json()
            ws3.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)
            # joining is trusted by default; authorization happens on send
            ws3.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws3)

            ws3.send_json({"event": "message:send", "data": {"conversationId": conversation_id, "content": "intrude"}})
            assert ws3.receive_json() == {
                "event": "message:error",
                "data": {"message": "Not authorized for this conversation"},
            }
            sync(ws2)

        history = test_client.get(f"/api/chat/conversations/{conversation_id}/messages", headers=auth_headers(u1))
        assert history.json()["messages"] == []

    def test_blank_and_malformed_frames_are_ignored(self, test_client: TestClient, seed_test_users):
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u1)) as ws1:
            ws1.receive_json()
            ws1.send_json({"event": "conversation:join", "data": conversation_id})
            ws1.send_json({"event": "message:send", "data": {"conversationId": conversation_id, "content": "   "}})
            ws1.send_json({"event": "message:send", "data": {"content": "no conversation"}})
            ws1.send_json({"event": "conversation:join", "data": ""})
            ws1.send_json({"event": "typing:start"})
            ws1.send_text("not json")
            ws1.send_bytes(b"\xff\xfe not json")
            ws1.send_bytes(b"")
            sync(ws1)

        history = test_client.get(f"/api/chat/conversations/{conversation_id}/messages", headers=auth_headers(u1))
        assert history.json()["messages"] == []

    def test_strict_join_refuses_outsiders(self, test_client: TestClient, seed_test_users, monkeypatch):
        monkeypatch.setattr(settings, "chat_strict_room_join", True)
        u1, u2, u3 = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u2)) as ws2, test_client.websocket_connect(ws_url(u3)) as ws3:
            ws2.receive_json()
            ws3.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            ws3.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)
            sync(ws3)

            test_client.post(
                f"/api/chat/conversations/{conversation_id}/messages",
                json={"content": "members only"},
                headers=auth_headers(u1),
            )

            assert ws2.receive_json()["event"] == "message:new"
            assert ws2.receive_json()["event"] == "conversation:update"
            sync(ws3)


async def failing_write(self, *args, **kwargs):
    raise PyMongoError("write concern timeout")


class TestStoreFailures:

    def test_socket_send_reports_generic_error_to_sender_only(self, test_client: TestClient, seed_test_users, monkeypatch):
        monkeypatch.setattr(MessageRepository, "append", failing_write)
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u1)) as ws1, test_client.websocket_connect(ws_url(u2)) as ws2:
            ws1.receive_json()
            ws2.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)

            ws1.send_json({"event": "message:send", "data": {"conversationId": conversation_id, "content": "lost"}})
            assert ws1.receive_json() == {"event": "message:error", "data": {"message": "Failed to send message"}}
            sync(ws2)

    def test_rest_send_returns_500_without_broadcast(self, test_client: TestClient, seed_test_users, monkeypatch):
        monkeypatch.setattr(MessageRepository, "append", failing_write)
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u2)) as ws2:
            ws2.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)

            response = test_client.post(
                f"/api/chat/conversations/{conversation_id}/messages",
                json={"content": "lost"},
                headers=auth_headers(u1),
            )
            assert response.status_code == 500
            assert response.json() == {
                "success": False,
                "error": "Failed to send message",
                "message": "write concern timeout",
            }
            sync(ws2)

        history = test_client.get(f"/api/chat/conversations/{conversation_id}/messages", headers=auth_headers(u1))
        assert history.json()["messages"] == []

    def test_summary_failure_keeps_message(self, test_client: TestClient, seed_test_users, monkeypatch):
        monkeypatch.setattr(ConversationRepository, "record_last_message", failing_write)
        u1, u2, _ = seed_test_users
        conversation_id = open_conversation(test_client, u1, u2)

        with test_client.websocket_connect(ws_url(u1)) as ws1, test_client.websocket_connect(ws_url(u2)) as ws2:
            ws1.receive_json()
            ws2.receive_json()
            ws2.send_json({"event": "conversation:join", "data": conversation_id})
            sync(ws2)

            ws1.send_json({"event": "message:send", "data": {"conversationId": conversation_id, "content": "half done"}})
            assert ws1.receive_json() == {"event": "message:error", "data": {"message": "Failed to send message"}}
            sync(ws2)

        history = test_client.get(f"/api/chat/conversations/{conversation_id}/messages", headers=auth_headers(u1))
        assert [m["content"] for m in history.json()["messages"]] == ["half done"]
        conversations = test_client.get("/api/chat/conversations", headers=auth_headers(u1)).json()["conversations"]
        assert conversations[0]["lastMessage"] is None
