"""FastAPI translation layer over the ledger, broadcaster and generator."""
from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Mapping, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .broadcaster import LedgerBroadcaster
from .config import build_parser, config_from_args, configure_logging, load_config
from .generator import ActivityGenerator
from .ledger import Ledger
from .models import AddRecordRequest, RecordRefRequest, TransactionType
from .stores import PatientRecordStore, load_stats_seed

logger = logging.getLogger("arogya.server")


def create_app(
    *,
    config: Optional[Mapping[str, Any]] = None,
    ledger: Optional[Ledger] = None,
    broadcaster: Optional[LedgerBroadcaster] = None,
    generator: Optional[ActivityGenerator] = None,
    record_store: Optional[PatientRecordStore] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    resolved_config = dict(config) if config is not None else load_config()
    resolved_ledger = ledger or Ledger(
        stats_seed=load_stats_seed(resolved_config.get("stats_seed")),
        capacity=int(resolved_config.get("log_capacity", 20)),
        rng=rng,
    )
    resolved_broadcaster = broadcaster or LedgerBroadcaster(
        resolved_ledger,
        subscriber_queue_size=int(resolved_config.get("subscriber_queue_size", 256)),
    )
    resolved_broadcaster.attach()
    resolved_generator = generator or ActivityGenerator(
        resolved_ledger,
        interval=float(resolved_config.get("activity_interval", 5.0)),
        probability=float(resolved_config.get("activity_probability", 0.3)),
    )
    resolved_records = (
        record_store if record_store is not None else PatientRecordStore.from_path(resolved_config.get("seed_path"))
    )

    @asynccontextmanager
    async def _lifespan(_: FastAPI):
        await resolved_generator.start()
        try:
            yield
        finally:
            await resolved_generator.stop()

    app = FastAPI(
        title="Arogya Ledger Dashboard",
        description="Live health-record ledger activity with websocket push.",
        version="1.0.0",
        lifespan=_lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(resolved_config.get("cors_origins") or ["*"]),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.state.config = resolved_config
    app.state.ledger = resolved_ledger
    app.state.broadcaster = resolved_broadcaster
    app.state.generator = resolved_generator
    app.state.record_store = resolved_records

    @app.get("/api/stats")
    async def stats() -> Dict[str, Any]:
        return resolved_ledger.stats().to_dict()

    @app.get("/api/transactions")
    async def transactions() -> List[Dict[str, Any]]:
        return [tx.to_dict() for tx in resolved_ledger.transactions()]

    @app.get("/api/records")
    async def records() -> List[Dict[str, Any]]:
        return resolved_records.list_records()

    @app.get("/api/records/{record_id}")
    async def record(record_id: str) -> Any:
        found = resolved_records.get(record_id)
        if found is None:
            return JSONResponse(status_code=404, content={"error": "Record not found"})
        return found

    @app.get("/api/records/{record_id}/transactions")
    async def record_transactions(record_id: str) -> List[Dict[str, Any]]:
        return [tx.to_dict() for tx in resolved_ledger.transactions_for(record_id)]

    @app.post("/api/simulate/add-record")
    async def add_record(body: AddRecordRequest) -> Dict[str, Any]:
        tx = await resolved_ledger.record(body.to_input())
        return tx.to_dict()

    @app.post("/api/simulate/verify-record")
    async def verify_record(body: RecordRefRequest) -> Dict[str, Any]:
        tx = await resolved_ledger.record(body.to_input(TransactionType.VERIFY_INTEGRITY))
        return tx.to_dict()

    @app.post("/api/simulate/decrypt-record")
    async def decrypt_record(body: RecordRefRequest) -> Dict[str, Any]:
        tx = await resolved_ledger.record(body.to_input(TransactionType.DECRYPT_RECORD))
        return tx.to_dict()

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "subscribers": resolved_broadcaster.subscriber_count,
            "generator_running": resolved_generator.running,
            "log_size": len(resolved_ledger.transactions()),
            "seed_records": len(resolved_records),
        }

    @app.websocket("/ws")
    async def ws_events(websocket: WebSocket) -> None:
        await stream_ledger_events(websocket, resolved_broadcaster)

    return app


async def stream_ledger_events(websocket: Any, broadcaster: LedgerBroadcaster) -> None:
    await websocket.accept()
    queue = broadcaster.subscribe()
    client = getattr(websocket, "client", None)
    logger.info("CLIENT_CONNECTED client=%s", client)
    try:
        while True:
            envelope = await queue.get()
            await websocket.send_json(_model_to_dict(envelope))
    except WebSocketDisconnect:
        return
    except (RuntimeError, OSError) as exc:
        # send on a socket the peer already closed
        logger.warning("CLIENT_SEND_FAILED client=%s error=%s", client, exc)
    finally:
        broadcaster.unsubscribe(queue)
        logger.info("CLIENT_DISCONNECTED client=%s", client)


def _model_to_dict(model: object) -> dict:
    dump = getattr(model, "model_dump", None)
    if callable(dump):
        return dict(dump())
    as_dict = getattr(model, "dict", None)
    if callable(as_dict):
        return dict(as_dict())
    return dict(model)  # type: ignore[arg-type]


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    config = config_from_args(args)
    configure_logging(str(config["log_level"]))
    app = create_app(config=config)
    import uvicorn

    logger.info("SERVER_START host=%s port=%s", config["host"], config["port"])
    uvicorn.run(
        app,
        host=str(config["host"]),
        port=max(1, int(config["port"])),
        log_level=str(config["log_level"]).lower(),
    )


if __name__ == "__main__":
    main()
