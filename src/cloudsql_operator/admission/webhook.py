"""HTTPS server answering AdmissionReview requests."""

import json
import logging
import os
import ssl
import tempfile
import threading

from flask import Flask, jsonify, request
from werkzeug.serving import make_server

from cloudsql_operator.patch import encode_patch

from .errors import ValidationError
from .register import ADMISSION_PATH

logger = logging.getLogger(__name__)

HEALTHZ_PATH = "/healthz"
DEFAULT_ADMISSION_REVIEW_API_VERSION = "admission.k8s.io/v1"
PATCH_TYPE = "JSONPatch"


def allowed(uid, operations=None):
    response = {"uid": uid, "allowed": True}
    if operations:
        response["patchType"] = PATCH_TYPE
        response["patch"] = encode_patch(operations)
    return response


def denied(uid, message):
    return {"uid": uid, "allowed": False, "status": {"message": message}}


def build_ssl_context(cert_pem: bytes, key_pem: bytes) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    # load_cert_chain only reads from files.
    with tempfile.TemporaryDirectory() as directory:
        cert_path = os.path.join(directory, "tls.crt")
        key_path = os.path.join(directory, "tls.key")
        with open(cert_path, "wb") as f:
            f.write(cert_pem)
        with open(key_path, "wb") as f:
            f.write(key_pem)
        context.load_cert_chain(cert_path, key_path)
    return context


class Webhook:
    """Admission webhook dispatching requests to per-resource handlers."""

    def __init__(self, handlers, host="0.0.0.0", port=443):
        self.handlers = {handler.gvr: handler for handler in handlers}
        self.host = host
        self.port = port
        self.app = self._create_app()
        self._server = None
        self._thread = None

    def _create_app(self):
        app = Flask(__name__)
        app.add_url_rule(HEALTHZ_PATH, "healthz", self.healthz, methods=["GET"])
        app.add_url_rule(
            ADMISSION_PATH, "admission", self.handle_admission, methods=["POST"]
        )
        return app

    def healthz(self):
        return "ok", 200

    def handle_admission(self):
        if request.mimetype != "application/json":
            return f"unsupported content type {request.content_type!r}", 415

        try:
            review = json.loads(request.get_data())
            admission_request = review["request"]
            if not isinstance(admission_request, dict):
                raise ValueError("request is not an object")
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to decode admissionreview: {e}")
            return jsonify(
                {
                    "apiVersion": DEFAULT_ADMISSION_REVIEW_API_VERSION,
                    "kind": "AdmissionReview",
                    "response": denied("", f"failed to decode admissionreview: {e}"),
                }
            )

        return jsonify(
            {
                "apiVersion": review.get("apiVersion")
                or DEFAULT_ADMISSION_REVIEW_API_VERSION,
                "kind": "AdmissionReview",
                "response": self.review(admission_request),
            }
        )

    def review(self, admission_request):
        """Compute the AdmissionResponse for an AdmissionRequest."""
        uid = admission_request.get("uid", "")
        resource = admission_request.get("resource") or {}
        gvr = (
            resource.get("group", ""),
            resource.get("version", ""),
            resource.get("resource", ""),
        )

        handler = self.handlers.get(gvr)
        if handler is None:
            return denied(
                uid,
                f"failed to validate resource with unsupported gvr {'/'.join(gvr)}",
            )

        try:
            operations = handler.admit(admission_request)
        except ValidationError as e:
            logger.info(
                f"Denied {admission_request.get('operation')} of {gvr[2]} "
                f"{admission_request.get('name', '')}: {e}"
            )
            return denied(uid, str(e))
        except Exception as e:
            logger.exception(f"Failed to admit {gvr[2]}: {e}")
            return denied(uid, str(e))

        return allowed(uid, operations)

    def start(self, cert_pem: bytes, key_pem: bytes):
        """Start serving over HTTPS in a background thread."""
        self._server = make_server(
            self.host,
            self.port,
            self.app,
            threaded=True,
            ssl_context=build_ssl_context(cert_pem, key_pem),
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="admission-webhook", daemon=True
        )
        self._thread.start()
        logger.info(f"Admission webhook listening on {self.host}:{self.port}")

    def stop(self, grace_period: float = 5.0):
        """Stop the server, waiting up to `grace_period` seconds for it to drain."""
        if self._server is None:
            return
        stopper = threading.Thread(target=self._server.shutdown, daemon=True)
        stopper.start()
        stopper.join(timeout=grace_period)
        if stopper.is_alive():
            logger.warning("Admission webhook did not shut down within the grace period")
        self._server.server_close()
        self._thread.join(timeout=grace_period)
        self._server = None
        logger.info("Admission webhook stopped")
