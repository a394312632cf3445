"""Tests for the /ws chat protocol with multi-client support.

Frames are ``{"event": name, "data": payload}`` in both directions. Each
client must ``authenticate`` before any room operation; afterwards every
server event arrives through the session's ordered outbound queue.
"""
from contextlib import contextmanager

from conftest import register_user


def send(ws, event, data=None):
    ws.send_json({"event": event, "data": data})


def recv(ws, event):
    """Receive the next frame and check its event name."""
    frame = ws.receive_json()
    assert frame["event"] == event, frame
    return frame["data"]


@contextmanager
def connected(client, token):
    """Open a socket and authenticate it."""
    with client.websocket_connect("/ws") as ws:
        send(ws, "authenticate", token)
        data = recv(ws, "authenticated")
        assert data["success"] is True
        yield ws


def join(ws, room_id="general"):
    send(ws, "join_room", room_id)
    data = recv(ws, "room_joined")
    assert data["roomId"] == room_id
    return data


def test_authenticate_with_invalid_token(api_client):
    """Bad tokens answer authenticated(success=false) and leave the socket usable."""
    with api_client.websocket_connect("/ws") as ws:
        send(ws, "authenticate", "not-a-token")
        data = recv(ws, "authenticated")
        assert data["success"] is False
        assert data["error"]

        # Still unauthenticated: room operations are rejected
        send(ws, "join_room", "general")
        error = recv(ws, "error")
        assert error["code"] == "not_authenticated"
        assert error["event"] == "join_room"


def test_authenticate_without_token(api_client):
    with api_client.websocket_connect("/ws") as ws:
        send(ws, "authenticate", None)
        assert recv(ws, "authenticated")["success"] is False


def test_malformed_frames_are_rejected(api_client):
    alice = register_user(api_client, "alice")
    with connected(api_client, alice["token"]) as ws:
        ws.send_text("{not json")
        assert recv(ws, "error")["code"] == "validation_error"

        ws.send_json(["authenticate"])
        assert recv(ws, "error")["code"] == "validation_error"

        send(ws, "dance", {})
        error = recv(ws, "error")
        assert error["code"] == "validation_error"
        assert error["event"] == "dance"


def test_send_and_read_receipt_between_two_users(api_client):
    """A and B join general; A says hi; B reads it; readBy becomes {A, B}."""
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")
    alice_id = alice["user"]["id"]
    bob_id = bob["user"]["id"]

    with connected(api_client, alice["token"]) as ws_a, \
         connected(api_client, bob["token"]) as ws_b:

        status = recv(ws_a, "user_status_change")
        assert status == {"username": "bob", "isOnline": True}

        room = join(ws_a)
        assert room["room"]["name"] == "General"
        join(ws_b)
        assert recv(ws_a, "user_joined_room") == {"username": "bob", "roomId": "general"}

        send(ws_a, "send_message", {"roomId": "general", "content": "hi", "type": "text"})
        msg_a = recv(ws_a, "new_message")
        msg_b = recv(ws_b, "new_message")

        assert msg_a == msg_b
        assert msg_b["senderId"] == alice_id
        assert msg_b["sender"] == "alice"
        assert msg_b["content"] == "hi"
        assert msg_b["type"] == "text"
        assert msg_b["roomId"] == "general"
        assert msg_b["id"]
        assert msg_b["readBy"] == [alice_id]

        send(ws_b, "read_messages", {"roomId": "general", "messageIds": [msg_b["id"]]})
        receipt_b = recv(ws_b, "read_receipt")
        receipt_a = recv(ws_a, "read_receipt")
        assert receipt_a == receipt_b
        assert receipt_a["messageId"] == msg_b["id"]
        assert set(receipt_a["readBy"]) == {alice_id, bob_id}

        engine = api_client.app.state.engine
        stored = engine.rooms.find_message("general", msg_b["id"])
        assert stored.readBy == {alice_id, bob_id}


def test_send_to_unknown_room(api_client):
    """No new_message is emitted anywhere; the sender gets room_not_found."""
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")

    with connected(api_client, alice["token"]) as ws_a, \
         connected(api_client, bob["token"]) as ws_b:
        recv(ws_a, "user_status_change")
        join(ws_a)
        join(ws_b)
        recv(ws_a, "user_joined_room")

        send(ws_a, "send_message", {"roomId": "nonexistent", "content": "hello?"})
        error = recv(ws_a, "error")
        assert error["code"] == "room_not_found"
        assert error["event"] == "send_message"

        # The next thing B sees is the follow-up, not the failed send
        send(ws_a, "send_message", {"roomId": "general", "content": "second"})
        assert recv(ws_b, "new_message")["content"] == "second"
        assert recv(ws_a, "new_message")["content"] == "second"

        engine = api_client.app.state.engine
        assert engine.rooms.get_message_count("general") == 1
        assert not engine.rooms.has_room("nonexistent")


def test_join_unknown_room(api_client):
    alice = register_user(api_client, "alice")
    with connected(api_client, alice["token"]) as ws:
        send(ws, "join_room", {"roomId": "nope"})
        error = recv(ws, "error")
        assert error["code"] == "room_not_found"
        assert error["event"] == "join_room"


def test_empty_message_rejected(api_client):
    alice = register_user(api_client, "alice")
    with connected(api_client, alice["token"]) as ws:
        join(ws)
        send(ws, "send_message", {"roomId": "general", "content": "   "})
        assert recv(ws, "error")["code"] == "validation_error"
        assert api_client.app.state.engine.rooms.get_message_count("general") == 0


def test_file_message_broadcast(api_client):
    alice = register_user(api_client, "alice")
    with connected(api_client, alice["token"]) as ws:
        join(ws)
        ref = '{"fileUrl": "/uploads/1-a.png", "filename": "a.png", "size": 10}'
        send(ws, "send_message", {"roomId": "general", "content": ref, "type": "file"})
        msg = recv(ws, "new_message")
        assert msg["type"] == "file"
        assert msg["content"] == ref


def test_disconnect_broadcasts_offline_once(api_client):
    """B, already told A is online, gets exactly one offline event."""
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")

    with connected(api_client, bob["token"]) as ws_b:
        with connected(api_client, alice["token"]):
            assert recv(ws_b, "user_status_change") == {"username": "alice", "isOnline": True}

        assert recv(ws_b, "user_status_change") == {"username": "alice", "isOnline": False}

        # Next event for B is its own join, not a second offline event
        join(ws_b)
        assert not api_client.app.state.engine.is_online(alice["user"]["id"])


def test_multi_device_presence(api_client):
    """Online/offline fire only on the first and last session of a user."""
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")
    engine = api_client.app.state.engine

    with connected(api_client, bob["token"]) as ws_b:
        with connected(api_client, alice["token"]):
            assert recv(ws_b, "user_status_change")["isOnline"] is True
            with connected(api_client, alice["token"]):
                assert len(engine.registry.sessions_for(alice["user"]["id"])) == 2

            # One device left: still online, no event for B
            join(ws_b)
            assert engine.is_online(alice["user"]["id"])

        assert recv(ws_b, "user_status_change") == {"username": "alice", "isOnline": False}


def test_leave_room_stops_broadcast(api_client):
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")

    with connected(api_client, alice["token"]) as ws_a, \
         connected(api_client, bob["token"]) as ws_b:
        recv(ws_a, "user_status_change")
        join(ws_a)
        join(ws_b)
        recv(ws_a, "user_joined_room")

        send(ws_b, "leave_room", "general")
        assert recv(ws_a, "user_left_room") == {"username": "bob", "roomId": "general"}

        send(ws_a, "send_message", {"roomId": "general", "content": "bob gone?"})
        recv(ws_a, "new_message")

        # B's next event is its re-join, the message above was never queued
        join(ws_b)
        recv(ws_a, "user_joined_room")


def test_typing_start_and_expiry(api_client):
    """typing(true) reaches peers, then expires into typing(false)."""
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")

    with connected(api_client, alice["token"]) as ws_a, \
         connected(api_client, bob["token"]) as ws_b:
        recv(ws_a, "user_status_change")
        join(ws_a)
        join(ws_b)
        recv(ws_a, "user_joined_room")

        send(ws_a, "typing", {"roomId": "general", "isTyping": True})
        assert recv(ws_b, "user_typing") == {
            "username": "alice", "roomId": "general", "isTyping": True
        }
        # No explicit stop: the coordinator expires it after the idle window
        assert recv(ws_b, "user_typing") == {
            "username": "alice", "roomId": "general", "isTyping": False
        }


def test_typing_explicit_stop(api_client):
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")

    with connected(api_client, alice["token"]) as ws_a, \
         connected(api_client, bob["token"]) as ws_b:
        recv(ws_a, "user_status_change")
        join(ws_a)
        join(ws_b)
        recv(ws_a, "user_joined_room")

        send(ws_a, "typing", {"roomId": "general", "isTyping": True})
        assert recv(ws_b, "user_typing")["isTyping"] is True
        send(ws_a, "typing", {"roomId": "general", "isTyping": False})
        assert recv(ws_b, "user_typing")["isTyping"] is False

        engine = api_client.app.state.engine
        assert not engine.typing.is_typing(alice["user"]["id"], "general")


def test_offline_member_gets_notification_on_reconnect(api_client):
    """Members of a room who are offline get a truncated preview when they come back."""
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")
    long_text = "x" * 60

    resp = api_client.post(
        "/api/rooms",
        json={"name": "Pair", "type": "private",
              "participants": [alice["user"]["id"], bob["user"]["id"]]},
        headers={"Authorization": f"Bearer {alice['token']}"},
    )
    room_id = resp.json()["id"]

    with connected(api_client, alice["token"]) as ws_a:
        join(ws_a, room_id)
        send(ws_a, "send_message", {"roomId": room_id, "content": long_text})
        recv(ws_a, "new_message")

        with connected(api_client, bob["token"]) as ws_b:
            notification = recv(ws_b, "notification")
            assert notification == {
                "type": "new_message",
                "roomId": room_id,
                "sender": "alice",
                "content": "x" * 50 + "...",
            }
            assert recv(ws_a, "user_status_change")["isOnline"] is True


def test_subscribing_alone_does_not_queue_notifications(api_client):
    """Joining general without membership means nothing is queued while offline."""
    alice = register_user(api_client, "alice")
    bob = register_user(api_client, "bob")

    with connected(api_client, bob["token"]) as ws_b:
        join(ws_b)

    with connected(api_client, alice["token"]) as ws_a:
        join(ws_a)
        send(ws_a, "send_message", {"roomId": "general", "content": "anyone?"})
        recv(ws_a, "new_message")

        with connected(api_client, bob["token"]) as ws_b:
            assert recv(ws_a, "user_status_change")["isOnline"] is True
            # Next frame for bob is his own join, not a notification
            join(ws_b)

        engine = api_client.app.state.engine
        assert engine.outbox.pending(bob["user"]["id"]) == []


def test_typing_flag_must_be_boolean(api_client):
    alice = register_user(api_client, "alice")
    with connected(api_client, alice["token"]) as ws:
        join(ws)
        send(ws, "typing", {"roomId": "general", "isTyping": "false"})
        error = recv(ws, "error")
        assert error["code"] == "validation_error"
        assert error["event"] == "typing"
        assert not api_client.app.state.engine.typing.is_typing(alice["user"]["id"], "general")
