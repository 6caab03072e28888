"""Flask web application providing the EcoGuide JSON API."""

from __future__ import annotations

import argparse
import atexit
import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.security import generate_password_hash

from analytics import MirrorWorker, MongoRepository
from auth import verified_identity
from config import Settings
from database import PostgresRepository
from errors import EcoGuideError, ValidationError
from progress import ProgressRecorder

GENERIC_ERROR = "Error en el servidor"


def _require_text(body: dict, field: str) -> str:
    value = body.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Falta el campo {field}", field=field)
    return value.strip()


def create_app(repo: PostgresRepository, recorder: ProgressRecorder, mongo: Optional[MongoRepository] = None) -> Flask:
    app = Flask(__name__)
    CORS(app)

    @app.errorhandler(EcoGuideError)
    def handle_ecoguide_error(exc: EcoGuideError) -> Any:
        return jsonify(exc.to_dict()), exc.status_code

    @app.route("/api/health")
    def health() -> Any:
        now = datetime.now(timezone.utc).isoformat()
        try:
            repo.ping()
        except Exception as exc:
            logging.warning("health check: postgres unavailable: %s", exc)
            return jsonify({"status": "unhealthy", "postgres": "down", "timestamp": now}), 503
        mongo_status = "down"
        if mongo is not None:
            try:
                mongo.ping()
                mongo_status = "up"
            except Exception as exc:
                logging.warning("health check: mongo unavailable: %s", exc)
        return jsonify({"status": "healthy", "postgres": "up", "mongo": mongo_status, "timestamp": now})

    @app.route("/api/residuos")
    def list_items() -> Any:
        try:
            items = repo.random_items(limit=10)
        except EcoGuideError:
            return jsonify({"error": "Error al cargar residuos"}), 500
        return jsonify([
            {
                "id": item.id,
                "nombre": item.nombre,
                "categoria": item.categoria,
                "dificultad": item.dificultad,
                "co2_base": item.co2_base,
            }
            for item in items
        ])

    @app.route("/api/auth/register", methods=["POST"])
    def register() -> Any:
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ValidationError("El cuerpo de la solicitud debe ser un objeto JSON")
        nombre = _require_text(body, "nombre")
        email = _require_text(body, "email").lower()
        password = _require_text(body, "password")
        user = repo.create_user(nombre, email, generate_password_hash(password))
        logging.info("user registered id=%s", user.id)
        return jsonify(user.public()), 201

    @app.route("/api/usuarios/<int:user_id>/progreso", methods=["PUT"])
    def record_progress(user_id: int) -> Any:
        payload = request.get_json(silent=True)
        recorder.record_progress(user_id, payload, verified_identity(request.headers))
        return jsonify({"success": True})

    @app.route("/api/clasificacion/registrar", methods=["POST"])
    def register_classification() -> Any:
        payload = request.get_json(silent=True)
        try:
            snapshot = recorder.register_classification(payload, verified_identity(request.headers))
        except EcoGuideError as exc:
            return jsonify({"success": False, "error": exc.message}), exc.status_code
        except Exception:
            logging.exception("classification failed")
            return jsonify({"success": False, "error": GENERIC_ERROR}), 500
        return jsonify({
            "success": True,
            "mensaje": "Clasificacion registrada",
            "datos": snapshot.to_dict(),
        })

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception) -> Any:
        code = getattr(exc, "code", None)
        if isinstance(code, int) and 400 <= code < 500:
            return jsonify({"error": getattr(exc, "description", str(exc))}), code
        logging.exception("unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": GENERIC_ERROR}), 500

    return app


def main() -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="EcoGuide API server")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--mongo-uri", default=None)
    parser.add_argument("--mongo-database", default=None)
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    env = dict(os.environ)
    if args.database_url:
        env["DATABASE_URL"] = args.database_url
    settings = Settings.from_env(env)
    overrides = {
        "mongo_uri": args.mongo_uri,
        "mongo_database": args.mongo_database,
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level.upper() if args.log_level else None,
    }
    settings = replace(settings, **{key: value for key, value in overrides.items() if value is not None})

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    repo = PostgresRepository(settings.database_url)
    mongo = MongoRepository(settings.mongo_uri, settings.mongo_database)
    mirror = MirrorWorker(mongo)
    atexit.register(mongo.close)
    atexit.register(mirror.close)

    try:
        repo.ping()
        logging.info("PostgreSQL connected")
    except Exception as exc:
        logging.error("PostgreSQL unavailable at startup: %s", exc)

    app = create_app(repo, ProgressRecorder(repo, mirror), mongo)
    app.run(host=settings.host, port=settings.port, debug=args.debug)


if __name__ == "__main__":
    main()
