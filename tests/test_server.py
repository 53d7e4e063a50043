from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path

from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from pydantic import ValidationError

from arogya_ledger.config import load_config
from arogya_ledger.ledger import Ledger
from arogya_ledger.models import (
    CHANNEL_STATS_UPDATE,
    CHANNEL_TRANSACTIONS_UPDATE,
    AddRecordRequest,
    LedgerStats,
    RecordRefRequest,
)
from arogya_ledger.server import create_app, stream_ledger_events
from arogya_ledger.stores import PatientRecordStore


def _endpoint(app, path: str, method: str = "GET"):
    for route in app.routes:
        if getattr(route, "path", "") == path and method in getattr(route, "methods", {method}):
            return route.endpoint
    raise AssertionError(f"route not found: {method} {path}")


class _FakeWebSocket:
    def __init__(self, *, disconnect_after: int, error: BaseException | None = None) -> None:
        self.accepted = False
        self.sent: list = []
        self.client = ("127.0.0.1", 5555)
        self._disconnect_after = disconnect_after
        self._error = error or WebSocketDisconnect(code=1000)

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: dict) -> None:
        self.sent.append(payload)
        if len(self.sent) >= self._disconnect_after:
            raise self._error


class TestLedgerApi(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.ledger = Ledger(stats_seed=LedgerStats(total_transactions=150))
        self.records = PatientRecordStore([{"recordId": "REC001", "patientName": "Asha"}])
        self.app = create_app(config=load_config(environ={}), ledger=self.ledger, record_store=self.records)

    async def test_add_record_endpoint(self) -> None:
        add_record = _endpoint(self.app, "/api/simulate/add-record", "POST")
        payload = await add_record(AddRecordRequest(recordId="REC099", patientName="Alice", condition="flu"))
        self.assertEqual(payload["type"], "ADD_RECORD")
        self.assertEqual(payload["status"], "SUCCESS")
        self.assertTrue(payload["encrypted"])
        stats = await _endpoint(self.app, "/api/stats")()
        self.assertEqual(stats["totalTransactions"], 151)
        transactions = await _endpoint(self.app, "/api/transactions")()
        self.assertEqual(transactions, [payload])

    async def test_verify_and_decrypt_endpoints(self) -> None:
        verify = await _endpoint(self.app, "/api/simulate/verify-record", "POST")(RecordRefRequest(recordId="REC001"))
        decrypt = await _endpoint(self.app, "/api/simulate/decrypt-record", "POST")(RecordRefRequest(recordId="REC001"))
        self.assertEqual(verify["type"], "VERIFY_INTEGRITY")
        self.assertIn(verify["status"], {"VALID", "TAMPERED"})
        self.assertEqual(decrypt["type"], "DECRYPT_RECORD")
        trail = await _endpoint(self.app, "/api/records/{record_id}/transactions")("REC001")
        self.assertEqual([row["id"] for row in trail], [decrypt["id"], verify["id"]])

    async def test_request_models_reject_missing_fields(self) -> None:
        with self.assertRaises(ValidationError):
            AddRecordRequest(recordId="REC099", patientName="Alice")
        with self.assertRaises(ValidationError):
            RecordRefRequest(recordId="")
        self.assertEqual(self.ledger.stats().total_transactions, 150)
        self.assertEqual(self.ledger.transactions(), [])

    async def test_seed_record_lookup(self) -> None:
        found = await _endpoint(self.app, "/api/records/{record_id}")("REC001")
        self.assertEqual(found["patientName"], "Asha")
        missing = await _endpoint(self.app, "/api/records/{record_id}")("REC404")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(json.loads(missing.body), {"error": "Record not found"})
        listing = await _endpoint(self.app, "/api/records")()
        self.assertEqual(len(listing), 1)

    async def test_health_reports_runtime_state(self) -> None:
        payload = await _endpoint(self.app, "/api/health")()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["subscribers"], 0)
        self.assertFalse(payload["generator_running"])

    async def test_websocket_stream_sends_snapshot_and_unsubscribes(self) -> None:
        broadcaster = self.app.state.broadcaster
        websocket = _FakeWebSocket(disconnect_after=2)
        await stream_ledger_events(websocket, broadcaster)
        self.assertTrue(websocket.accepted)
        self.assertEqual([row["event"] for row in websocket.sent], [CHANNEL_STATS_UPDATE, CHANNEL_TRANSACTIONS_UPDATE])
        self.assertEqual(websocket.sent[0]["data"]["totalTransactions"], 150)
        self.assertEqual(broadcaster.subscriber_count, 0)

    async def test_websocket_send_failure_unsubscribes_quietly(self) -> None:
        broadcaster = self.app.state.broadcaster
        websocket = _FakeWebSocket(
            disconnect_after=1,
            error=RuntimeError("Cannot call \"send\" once a close message has been sent."),
        )
        with self.assertLogs("arogya.server", level="WARNING") as logs:
            await stream_ledger_events(websocket, broadcaster)
        self.assertTrue(any("CLIENT_SEND_FAILED" in line for line in logs.output))
        self.assertEqual(broadcaster.subscriber_count, 0)


class TestLedgerHttp(unittest.TestCase):
    def setUp(self) -> None:
        self.ledger = Ledger(stats_seed=LedgerStats(total_transactions=150))
        self.records = PatientRecordStore([{"recordId": "REC001", "patientName": "Asha"}])
        self.app = create_app(config=load_config(environ={}), ledger=self.ledger, record_store=self.records)
        self.client = TestClient(self.app)

    def test_add_record_missing_field_is_rejected_without_mutation(self) -> None:
        queue = self.app.state.broadcaster.subscribe()
        while not queue.empty():
            queue.get_nowait()
        response = self.client.post(
            "/api/simulate/add-record",
            json={"recordId": "REC099", "patientName": "Alice"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.ledger.stats().total_transactions, 150)
        self.assertEqual(self.ledger.transactions(), [])
        self.assertTrue(queue.empty())

    def test_blank_record_id_is_rejected(self) -> None:
        response = self.client.post("/api/simulate/verify-record", json={"recordId": ""})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.ledger.stats().total_transactions, 150)

    def test_add_record_over_http(self) -> None:
        response = self.client.post(
            "/api/simulate/add-record",
            json={"recordId": "REC099", "patientName": "Alice", "condition": "flu"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["type"], "ADD_RECORD")
        self.assertEqual(self.client.get("/api/stats").json()["totalTransactions"], 151)

    def test_missing_record_uses_error_body(self) -> None:
        response = self.client.get("/api/records/REC404")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Record not found"})

    def test_cross_origin_requests_are_allowed(self) -> None:
        response = self.client.get("/api/stats", headers={"Origin": "http://other.example"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers.get("access-control-allow-origin"), "*")

        preflight = self.client.options(
            "/api/simulate/add-record",
            headers={
                "Origin": "http://other.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )
        self.assertEqual(preflight.status_code, 200)
        self.assertEqual(preflight.headers.get("access-control-allow-origin"), "*")

    def test_cors_origins_are_configurable(self) -> None:
        app = create_app(
            config=load_config(environ={"AROGYA_CORS_ORIGINS": "http://dash.example, http://ops.example"}),
            ledger=self.ledger,
            record_store=self.records,
        )
        client = TestClient(app)
        allowed = client.get("/api/stats", headers={"Origin": "http://dash.example"})
        self.assertEqual(allowed.headers.get("access-control-allow-origin"), "http://dash.example")
        blocked = client.get("/api/stats", headers={"Origin": "http://other.example"})
        self.assertIsNone(blocked.headers.get("access-control-allow-origin"))

class TestConfigAndStores(unittest.TestCase):
    def test_environment_overrides_defaults(self) -> None:
        config = load_config(environ={"PORT": "8080", "AROGYA_ACTIVITY_INTERVAL": "2.5"})
        self.assertEqual(config["port"], 8080)
        self.assertEqual(config["activity_interval"], 2.5)
        self.assertEqual(load_config(environ={})["port"], 3000)

    def test_explicit_overrides_win(self) -> None:
        config = load_config({"port": 9000, "host": None}, environ={"PORT": "8080"})
        self.assertEqual(config["port"], 9000)
        self.assertEqual(config["host"], "0.0.0.0")

    def test_invalid_environment_value_raises(self) -> None:
        with self.assertRaises(ValueError):
            load_config(environ={"PORT": "not-a-port"})

    def test_record_store_loads_seed_file(self) -> None:
        with tempfile.TemporaryDirectory(prefix="arogya_seed_") as temp_dir:
            path = Path(temp_dir) / "mock_patients.json"
            path.write_text(json.dumps([{"recordId": "REC007"}, "junk"]), encoding="utf-8")
            store = PatientRecordStore.from_path(path)
            self.assertEqual(len(store), 1)
            self.assertEqual(store.get("REC007"), {"recordId": "REC007"})
            missing = PatientRecordStore.from_path(Path(temp_dir) / "absent.json")
            self.assertEqual(missing.list_records(), [])

    def test_default_seed_path_does_not_depend_on_working_directory(self) -> None:
        previous = os.getcwd()
        with tempfile.TemporaryDirectory(prefix="arogya_cwd_") as temp_dir:
            os.chdir(temp_dir)
            try:
                app = create_app(config=load_config(environ={}))
            finally:
                os.chdir(previous)
        store = app.state.record_store
        self.assertGreater(len(store), 0)
        self.assertIsNotNone(store.get("REC001"))

    def test_explicit_empty_record_store_is_kept(self) -> None:
        empty = PatientRecordStore()
        app = create_app(config=load_config(environ={}), record_store=empty)
        self.assertIs(app.state.record_store, empty)


if __name__ == "__main__":
    unittest.main()
