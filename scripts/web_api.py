#!/usr/bin/env python
from __future__ import annotations

import os
import sys
from pathlib import Path

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge

# Add project root to sys.path for the "logiaudit" package
APP_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(APP_ROOT))

from logiaudit.audit.gate import GateDecision  # noqa: E402
from logiaudit.config import GatekeeperConfig  # noqa: E402
from logiaudit.quality.gatekeeper import Gatekeeper  # noqa: E402
from logiaudit.utils.image import SUPPORTED_MIME_TYPES, normalize_mime_type  # noqa: E402
from logiaudit.utils.logging import setup_logger  # noqa: E402


logger = setup_logger()

APP = Flask(__name__)

# Allow large phone photos (set via env MAX_UPLOAD_MB, default 32MB)
try:
    _max_mb = int(os.environ.get("MAX_UPLOAD_MB", "32"))
except ValueError:
    _max_mb = 32
APP.config["MAX_CONTENT_LENGTH"] = max(1, _max_mb) * 1024 * 1024  # bytes

GATEKEEPER = Gatekeeper(GatekeeperConfig.from_env())


@APP.errorhandler(RequestEntityTooLarge)
def _too_large(e):
    return jsonify({
        "error": "too_large",
        "message": "Upload too large",
        "limit_mb": int(APP.config.get("MAX_CONTENT_LENGTH", 0) // (1024 * 1024)),
    }), 413


@APP.get("/api/health")
def api_health() -> Response:
    return jsonify({"ok": True, "threshold": GATEKEEPER.config.threshold})


@APP.route("/api/check", methods=["POST"])
def api_check() -> Response:
    doc = request.files.get("document")
    if doc is None or not doc.filename:
        return jsonify({"error": "no_file", "message": "Upload the document photo in field 'document'"}), 400
    mime = normalize_mime_type(doc.mimetype)
    if mime not in SUPPORTED_MIME_TYPES:
        return jsonify({"error": "unsupported_type", "message": f"Unsupported type {mime or 'unknown'}"}), 400

    verdict = GATEKEEPER.analyze(doc.read(), mime)
    decision = GateDecision.from_verdict(verdict, GATEKEEPER.config.threshold)
    logger.info(f"/api/check {doc.filename}: score={verdict.score} reason={verdict.reason}")
    return jsonify(decision.to_dict())


def main() -> None:
    port = int(os.environ.get("PORT", 8000))
    APP.run(host="127.0.0.1", port=port, debug=False, threaded=True, use_reloader=False)


if __name__ == "__main__":
    main()
