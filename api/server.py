"""
Metric Collector HTTP API

Flask app serving:
- Path-form writes       POST /update/<kind>/<name>/<value>
- JSON writes            POST /update/   (body may be gzip-compressed)
- Point reads            GET  /value/<kind>/<name>, POST /value/
- Index of all metrics   GET  /

Run:
    metrics server -a localhost:8080 -f /tmp/metrics-db.json
"""

from __future__ import annotations

import gzip
import logging
import threading
import time
import zlib
from typing import Optional

from flask import Flask, Response, current_app, g, jsonify, render_template_string, request
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.serving import make_server

from metric_ledger.models import Metric, MetricQuery, format_value
from metric_ledger.service import (
    CollectorService,
    InvalidMetricError,
    MetricNotFoundError,
)
from metric_ledger.settings import CollectorSettings

logger = logging.getLogger(__name__)

COMPRESSIBLE = ("application/json", "text/html")

INDEX_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<body>
<pre>{{ lines }}</pre>
</body>
</html>
"""


def _service() -> CollectorService:
    return current_app.extensions["collector"]


def _read_body() -> bytes:
    """Request body, gunzipped when Content-Encoding says so."""
    data = request.get_data()
    if request.headers.get("Content-Encoding", "").strip().lower() == "gzip":
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise InvalidMetricError(f"invalid gzip body: {e}") from e
    if not data:
        raise InvalidMetricError("empty body")
    return data


def _plain(text: str, status: int = 200) -> Response:
    return Response(text, status=status, mimetype="text/plain")


def create_app(service: CollectorService) -> Flask:
    """Build the collector app around an already-opened service."""
    app = Flask(__name__)
    app.extensions["collector"] = service
    CORS(app)

    @app.errorhandler(InvalidMetricError)
    def bad_request(e: InvalidMetricError):
        logger.debug(f"Rejected {request.method} {request.path}: {e}")
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(MetricNotFoundError)
    def not_found(e: MetricNotFoundError):
        return jsonify({"error": str(e)}), 404

    @app.before_request
    def start_timer():
        g.started = time.monotonic()

    @app.after_request
    def compress(response: Response) -> Response:
        """Gzip JSON/HTML bodies for clients that accept it."""
        accepts = request.headers.get("Accept-Encoding", "").lower()
        if (
            "gzip" not in accepts
            or response.direct_passthrough
            or response.status_code != 200
            or "Content-Encoding" in response.headers
            or response.mimetype not in COMPRESSIBLE
        ):
            return response
        response.set_data(gzip.compress(response.get_data()))
        response.headers["Content-Encoding"] = "gzip"
        response.vary.add("Accept-Encoding")
        return response

    @app.after_request
    def access_log(response: Response) -> Response:
        elapsed_ms = (time.monotonic() - g.get("started", time.monotonic())) * 1000
        logger.debug(
            f"{request.method} {request.path} -> {response.status_code} "
            f"({elapsed_ms:.1f} ms)"
        )
        return response

    @app.route("/", methods=["GET"])
    def index():
        """All metrics as `name value` lines; 404 while the store is empty."""
        metrics = _service().get_all_metrics()
        if not metrics:
            return jsonify({"error": "no metrics"}), 404
        lines = "\n".join(f"{m.id} {format_value(m)}" for m in metrics)
        return render_template_string(INDEX_TEMPLATE, lines=lines)

    @app.route("/", methods=["POST"])
    def index_post():
        return jsonify({"error": "not found"}), 404

    @app.route("/update/<kind>/<name>/<value>", methods=["POST"])
    def update_path(kind: str, name: str, value: str):
        _service().update(kind, name, value)
        return _plain("")

    @app.route("/update/", methods=["POST"])
    def update_json():
        """
        Store one metric from a JSON message.

        Request body:
        {"id": "PollCount", "type": "counter", "delta": 3}

        Returns the stored metric; counters carry the accumulated total.
        """
        try:
            metric = Metric.model_validate_json(_read_body())
        except ValidationError as e:
            raise InvalidMetricError(f"invalid metric: {e}") from e
        stored = _service().update_metric(metric)
        return jsonify(stored.to_wire())

    @app.route("/value/<kind>/<name>", methods=["GET"])
    def value_path(kind: str, name: str):
        metric = _service().lookup(kind, name)
        return _plain(format_value(metric))

    @app.route("/value/", methods=["POST"])
    def value_json():
        try:
            query = MetricQuery.model_validate_json(_read_body())
        except ValidationError as e:
            raise InvalidMetricError(f"invalid query: {e}") from e
        metric = _service().lookup(query.mtype, query.id)
        return jsonify(metric.to_wire())

    return app


def serve(
    app: Flask,
    settings: CollectorSettings,
    stop: threading.Event,
    ready: Optional[threading.Event] = None,
) -> bool:
    """
    Serve `app` until `stop` is set, then drain.

    Draining stops accepting connections and waits up to
    SHUTDOWN_GRACE seconds for in-flight requests.

    Returns:
        True if the drain finished within the grace period
    """
    host, port = settings.host_port
    server = make_server(host, port, app, threaded=True)
    # request threads are joined on close so in-flight requests can finish
    server.daemon_threads = False

    worker = threading.Thread(target=server.serve_forever, name="collector-http", daemon=True)
    worker.start()
    logger.info(f"Collector listening on {host}:{server.server_port}")
    if ready is not None:
        ready.set()

    stop.wait()
    logger.info("Shutting down collector")

    def _drain():
        server.shutdown()
        server.server_close()

    drainer = threading.Thread(target=_drain, name="collector-drain", daemon=True)
    drainer.start()
    drainer.join(timeout=settings.SHUTDOWN_GRACE)
    if drainer.is_alive():
        logger.warning(
            f"In-flight requests still running after {settings.SHUTDOWN_GRACE}s grace"
        )
        return False
    return True
