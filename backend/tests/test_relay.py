"""
Tests for the relay hub WebSocket endpoint.

Two participants share a session over /ws; every change one of them makes
is pushed to the other.
"""


def join(ws, session_id="K7M2QX", **extra):
    ws.send_json({"event": "join-session", "data": {"sessionId": session_id, **extra}})
    snapshot = ws.receive_json()
    participants = ws.receive_json()
    return snapshot, participants


class TestTwoParticipants:
    """Host publishes, scanner joins, scans fan out."""

    def test_scan_reaches_other_participant(self, client):
        with client.websocket_connect("/ws") as host:
            snapshot, participants = join(host)
            assert snapshot["event"] == "session-data"
            assert snapshot["data"]["catalog"]["items"] == []
            assert participants["data"]["count"] == 1

            host.send_json({"event": "update-catalog", "data": {
                "sessionId": "K7M2QX",
                "catalog": [{"Code": "A1"}, {"Code": "B2"}],
            }})
            updated = host.receive_json()
            assert updated["event"] == "catalog-updated"
            assert updated["data"]["scannedCodes"] == []

            with client.websocket_connect("/ws") as scanner:
                snapshot, participants = join(scanner, "k7m2qx")
                assert len(snapshot["data"]["catalog"]["items"]) == 2
                assert snapshot["data"]["participantCount"] == 2
                assert host.receive_json() == {"event": "participants", "data": {"count": 2}}

                host.send_json({"event": "new-scan", "data": {"sessionId": "K7M2QX", "code": "X9"}})
                pushed = scanner.receive_json()
                assert pushed["event"] == "scan-applied"
                assert pushed["data"]["code"] == "X9"
                assert pushed["data"]["outcome"] == "surplus"
                assert pushed["data"]["totalScanned"] == 1
                assert host.receive_json()["event"] == "scan-applied"

                # Repeat goes back to the sender only
                scanner.send_json({"event": "new-scan", "data": {"code": "X9"}})
                duplicate = scanner.receive_json()
                assert duplicate["event"] == "scan-duplicate"
                assert duplicate["data"]["outcome"] == "duplicate"

                scanner.send_json({"event": "new-scan", "data": {"code": "A1"}})
                assert scanner.receive_json()["data"]["progressPercent"] == 50
                assert host.receive_json()["data"]["code"] == "A1"

            # Scanner left
            assert host.receive_json() == {"event": "participants", "data": {"count": 1}}

    def test_late_joiner_gets_ledger(self, client):
        with client.websocket_connect("/ws") as host:
            join(host)
            host.send_json({"event": "update-catalog", "data": {"excelData": [{"Code": "A1"}]}})
            host.receive_json()
            host.send_json({"event": "new-scan", "data": {"code": "A1"}})
            host.receive_json()

            with client.websocket_connect("/ws") as late:
                snapshot, _ = join(late)
                assert snapshot["data"]["scannedCodes"] == ["A1"]


class TestHosting:
    def test_create_session_then_scanner_joins(self, client, hub):
        codes = iter(["K7M2QX", "ABCDEF"])
        hub.service.code_generator = lambda: next(codes)

        with client.websocket_connect("/ws") as early:
            join(early)  # K7M2QX now exists, empty

            with client.websocket_connect("/ws") as host:
                host.send_json({"event": "create-session", "data": {
                    "catalog": [{"Code": "A1"}, {"Code": "B2"}], "requestId": "h-1",
                }})
                snapshot = host.receive_json()
                assert snapshot["event"] == "session-data"
                assert snapshot["data"]["sessionId"] == "ABCDEF"
                assert snapshot["data"]["requestId"] == "h-1"
                assert host.receive_json()["data"]["count"] == 1

                with client.websocket_connect("/ws") as scanner:
                    snapshot, _ = join(scanner, "abcdef")
                    assert len(snapshot["data"]["catalog"]["items"]) == 2


class TestErrors:
    def test_request_id_is_echoed(self, client):
        with client.websocket_connect("/ws") as ws:
            snapshot, participants = join(ws, requestId="r-1")
            assert snapshot["data"]["requestId"] == "r-1"
            assert "requestId" not in participants["data"]

    def test_bad_json(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            msg = ws.receive_json()
            assert msg["event"] == "error"
            assert msg["data"]["kind"] == "invalid-input"

    def test_unknown_event(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "teleport", "data": {"requestId": "r-2"}})
            msg = ws.receive_json()
            assert msg["data"]["kind"] == "invalid-input"
            assert msg["data"]["requestId"] == "r-2"

    def test_scan_before_join(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "new-scan", "data": {"code": "A1"}})
            assert ws.receive_json()["event"] == "error"

    def test_bad_session_code(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "join-session", "data": {"sessionId": "nope"}})
            msg = ws.receive_json()
            assert msg["event"] == "error"
            assert msg["data"]["kind"] == "invalid-input"

    def test_empty_scan(self, client):
        with client.websocket_connect("/ws") as ws:
            join(ws)
            ws.send_json({"event": "new-scan", "data": {"code": ""}})
            assert ws.receive_json()["data"]["kind"] == "invalid-input"
