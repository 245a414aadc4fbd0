# natalchart/main.py
from __future__ import annotations

import logging
import os
import traceback
from time import perf_counter
from typing import Any, Dict, Optional

from flask import Flask, Response, current_app, jsonify, request
from flask_cors import CORS
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from werkzeug.exceptions import BadRequest, HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from natalchart.core.engine import ChartEngine, get_default_engine
from natalchart.core.validators import ValidationError, birth_data_from_local
from natalchart.utils.metrics import GAUGE_APP_UP, MET_REQUESTS, REQ_LATENCY
from natalchart.version import VERSION

_ENGINE_KEY = "natalchart.engine"
_TRACKED_ROUTES = ("/health", "/api/chart", "/metrics")

# ───────────────────────── helpers: logging & errors ─────────────────────────
def _configure_logging(app: Flask) -> None:
    gerr = logging.getLogger("gunicorn.error")
    if gerr.handlers:
        app.logger.handlers = gerr.handlers
        app.logger.setLevel(gerr.level)
    else:
        logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

def _register_errors(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def _invalid(e: ValidationError):
        app.logger.info("invalid input at %s %s: %s", request.method, request.path, e)
        return jsonify(
            ok=False,
            error="invalid_birth_data",
            message=str(e),
            details=e.errors(),
            path=request.path,
        ), 400

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        app.logger.warning("HTTP %s at %s %s: %s", e.code, request.method, request.path, e.description)
        return jsonify(
            ok=False,
            error="http_error",
            code=e.code,
            name=e.name,
            message=e.description,
            path=request.path,
        ), e.code

    @app.errorhandler(Exception)
    def _any(e: Exception):
        tb = traceback.format_exc()
        app.logger.error("UNHANDLED %s at %s %s\n%s", type(e).__name__, request.method, request.path, tb)
        return jsonify(
            ok=False,
            error="internal_error",
            type=type(e).__name__,
            message=str(e),
            path=request.path,
        ), 500

def _metrics_auth_ok() -> bool:
    auth = request.authorization
    user = os.getenv("METRICS_USER", "")
    pw = os.getenv("METRICS_PASS", "")
    return bool(
        auth and auth.type == "basic" and auth.username == user and auth.password == pw and user and pw
    )

def _body_json() -> Dict[str, Any]:
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise BadRequest("JSON body must be an object")
    return data

def _engine() -> ChartEngine:
    eng = current_app.extensions.get(_ENGINE_KEY)
    return eng if eng is not None else get_default_engine()

# ───────────────────────── routes ─────────────────────────
def _register_health(app: Flask) -> None:
    @app.route("/health", methods=["GET"])
    def health():
        return jsonify(ok=True, status="ok", version=VERSION), 200

def _register_core_api(app: Flask) -> None:
    @app.post("/api/chart")
    async def chart():
        payload = _body_json()
        for k in ("date", "time", "place_tz"):
            if not isinstance(payload.get(k), str):
                raise BadRequest("Provide 'date', 'time', 'place_tz' (IANA), 'latitude' and 'longitude'")
        birth = birth_data_from_local(
            payload["date"],
            payload["time"],
            payload["place_tz"],
            payload.get("latitude"),
            payload.get("longitude"),
            name=payload.get("name"),
            elevation_m=payload.get("elevation_m", 0.0),
        )
        result = await _engine().service.get_or_compute(birth)
        return jsonify(ok=True, degraded=result.degraded, chart=result.to_dict()), 200

    @app.route("/metrics", methods=["GET"])
    def metrics_endpoint():
        if not _metrics_auth_ok():
            return Response("Unauthorized", 401, {"WWW-Authenticate": 'Basic realm="metrics"'})
        GAUGE_APP_UP.set(1.0)
        data = generate_latest(REGISTRY)
        return Response(data, mimetype=CONTENT_TYPE_LATEST)

# ───────────────────────── app factory ─────────────────────────
def create_app(engine: Optional[ChartEngine] = None) -> Flask:
    """Build the HTTP surface. Without `engine`, the process-wide default is built on first use."""
    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore
    app.extensions[_ENGINE_KEY] = engine

    _configure_logging(app)

    for route in _TRACKED_ROUTES:
        MET_REQUESTS.labels(route=route).inc(0)
    GAUGE_APP_UP.set(1.0)

    @app.before_request
    def _before():
        if request.path in _TRACKED_ROUTES:
            MET_REQUESTS.labels(route=request.path).inc()
            request.environ["natalchart.t0"] = perf_counter()

    @app.after_request
    def _after(resp):
        t0 = request.environ.get("natalchart.t0")
        if t0 is not None:
            REQ_LATENCY.labels(route=request.path).observe(perf_counter() - t0)
        return resp

    _register_health(app)
    _register_errors(app)
    _register_core_api(app)

    # CORS for browser UIs
    allowed_origin = os.environ.get("CORS_ALLOW_ORIGIN") or "*"
    CORS(
        app,
        resources={r"/.*": {"origins": allowed_origin}},
        supports_credentials=False,
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )

    app.logger.info("App initialized; version=%s; injected_engine=%s", VERSION, engine is not None)
    return app

# ───────────────────────── app instance ─────────────────────────
app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
