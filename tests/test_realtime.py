"""Tests for the /ws collaboration socket.

Uses Starlette's TestClient, which runs the app lifespan and both sockets on
one background event loop.
"""
from fastapi.testclient import TestClient

from app.main import app


def test_join_presence_and_disconnect_over_websocket():
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws?userId=u-ada&userName=Ada") as ada:
            ada.send_json({"event": "join_idea_room", "ideaId": 7})
            assert ada.receive_json() == {"event": "joined", "data": {"ideaId": 7}}

            with tc.websocket_connect("/ws?userId=u-bob&userName=Bob") as bob:
                bob.send_json({"event": "join_idea_room", "ideaId": "7"})
                assert bob.receive_json() == {"event": "joined", "data": {"ideaId": 7}}
                assert ada.receive_json() == {
                    "event": "user_joined",
                    "data": {"ideaId": 7, "userId": "u-bob"},
                }

            # Closing Bob's socket runs the normal leave path
            assert ada.receive_json() == {
                "event": "user_left",
                "data": {"ideaId": 7, "userId": "u-bob"},
            }


def test_leave_command_is_acknowledged():
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws?userId=u-ada") as ada, \
                tc.websocket_connect("/ws?userId=u-bob") as bob:
            ada.send_json({"event": "join_idea_room", "ideaId": 1})
            ada.receive_json()
            bob.send_json({"event": "join_idea_room", "ideaId": 1})
            bob.receive_json()
            ada.receive_json()  # user_joined for Bob

            bob.send_json({"event": "leave_idea_room", "ideaId": 1})
            assert bob.receive_json() == {"event": "left", "data": {"ideaId": 1}}
            assert ada.receive_json() == {
                "event": "user_left",
                "data": {"ideaId": 1, "userId": "u-bob"},
            }


def test_malformed_commands_get_error_and_socket_stays_open():
    with TestClient(app) as tc:
        with tc.websocket_connect("/ws") as viewer:
            viewer.send_text("not json")
            assert viewer.receive_json()["event"] == "error"

            viewer.send_json({"event": "dance", "ideaId": 1})
            assert viewer.receive_json()["event"] == "error"

            viewer.send_json({"event": "join_idea_room", "ideaId": "abc"})
            assert viewer.receive_json()["event"] == "error"

            viewer.send_json({"event": "join_idea_room", "ideaId": 2})
            assert viewer.receive_json() == {"event": "joined", "data": {"ideaId": 2}}
