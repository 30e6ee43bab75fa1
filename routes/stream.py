"""Violation stream WebSocket: one JSON message per violation store notification."""

import json
import queue
import threading

from flask import current_app
from flask_sock import Sock
from simple_websocket import ConnectionClosed

sock = Sock()


def _message(engine, event: str) -> str:
    store = engine.store
    return json.dumps({
        "event": event,
        "violation_count": store.get_total_violation_count(),
        "document_count": store.get_document_count(),
        "last_full_validation": store.last_full_validation,
    })


@sock.route("/ws/violations")
def violations_stream(ws):
    engine = current_app.config["LINT_ENGINE"]
    events: queue.Queue = queue.Queue()
    stop_event = threading.Event()

    def client_reader():
        # Incoming messages are ignored; this only notices the client leaving.
        try:
            while ws.receive() is not None:
                pass
        except ConnectionClosed:
            pass
        stop_event.set()

    engine.store.on_change(events.put)
    reader = threading.Thread(target=client_reader, daemon=True)
    reader.start()
    try:
        ws.send(_message(engine, "snapshot"))
        while not stop_event.is_set():
            try:
                event = events.get(timeout=0.5)
            except queue.Empty:
                continue
            ws.send(_message(engine, event))
    except ConnectionClosed:
        pass
    finally:
        engine.store.off_change(events.put)
        stop_event.set()
