# app.py
import io
import logging
from pathlib import Path

from flask import Flask, request, jsonify, send_file, abort
from sqlalchemy.engine import make_url
from sqlalchemy.orm import selectinload

from app_logging import get_logger
from config import Config
from invoice_math import FeePolicy, TaxSelection, compute_totals, line_item_from_dict
from models import Base, make_engine, make_session_factory, Invoice
from pdf_service import InvalidInvoice, generate_and_store_pdf, pdf_filename, render
from render_config import (
    InvalidConfig,
    RenderConfig,
    default_render_config,
    load_render_config,
    save_render_config,
)

logger = logging.getLogger(__name__)

CONFIG_TYPES = ("display", "print")


# -----------------------------
# Helpers
# -----------------------------
def _ensure_dirs(app):
    url = make_url(app.config["SQLALCHEMY_DATABASE_URI"])
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    Path(app.config["EXPORTS_DIR"]).mkdir(parents=True, exist_ok=True)


def _config_path(app, config_type: str) -> str:
    if config_type not in CONFIG_TYPES:
        abort(400, description=f"type must be one of: {', '.join(CONFIG_TYPES)}")
    key = "PRINT_CONFIG_PATH" if config_type == "print" else "DISPLAY_CONFIG_PATH"
    return app.config[key]


def _read_config(path: str) -> RenderConfig:
    # Read per request; the settings screen may have changed the file
    try:
        return load_render_config(path)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return default_render_config()


def _invoice_or_404(session, invoice_id: int) -> Invoice:
    inv = (
        session.query(Invoice)
        .options(selectinload(Invoice.items))
        .filter(Invoice.id == invoice_id)
        .first()
    )
    if not inv:
        abort(404)
    return inv


def _error(message: str, status: int):
    return jsonify({"error": message}), status


# -----------------------------
# App factory
# -----------------------------
def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Root handler so records from the library modules are emitted too
    get_logger("", app.config.get("LOG_LEVEL"))

    _ensure_dirs(app)

    engine = make_engine(app.config["SQLALCHEMY_DATABASE_URI"], echo=app.config["SQLALCHEMY_ECHO"])
    Base.metadata.create_all(engine)

    SessionLocal = make_session_factory(engine)

    def db_session():
        return SessionLocal()

    app.extensions["invoice_sessions"] = SessionLocal

    # -----------------------------
    # Totals (live recalculation for the invoice form)
    # -----------------------------
    @app.route("/api/invoices/totals", methods=["POST"])
    def invoice_totals():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _error("Expected a JSON object", 400)

        raw_items = body.get("items") or []
        if not isinstance(raw_items, list):
            return _error("items must be a list", 400)
        try:
            items = [line_item_from_dict(it) for it in raw_items]
        except (ValueError, TypeError, AttributeError) as e:
            return _error(f"Invalid line item: {e}", 400)
        try:
            selection = TaxSelection.from_dict(body.get("taxSelection"))
            policy = FeePolicy.from_dict(body.get("feePolicy"))
        except ValueError as e:
            return _error(str(e), 400)

        totals = compute_totals(items, selection, policy)
        return jsonify(totals.as_dict())

    # -----------------------------
    # Invoice layout config
    # -----------------------------
    @app.route("/api/invoice-config", methods=["GET"])
    def invoice_config_get():
        path = _config_path(app, request.args.get("type") or "display")
        try:
            config = _read_config(path)
        except InvalidConfig as e:
            logger.error("Stored config %s is invalid: %s", path, e)
            return _error(f"Stored configuration is invalid: {e}", 500)
        return jsonify(config.to_dict())

    @app.route("/api/invoice-config", methods=["PUT"])
    def invoice_config_put():
        path = _config_path(app, request.args.get("type") or "display")
        body = request.get_json(silent=True)
        try:
            config = RenderConfig.from_dict(body)
        except InvalidConfig as e:
            return _error(str(e), 400)

        save_render_config(config, path)
        logger.info("Saved invoice config to %s", path)
        return jsonify({"success": True, "config": config.to_dict()})

    # -----------------------------
    # PDF routes
    # -----------------------------
    @app.route("/invoices/<int:invoice_id>/pdf")
    def invoice_pdf(invoice_id):
        try:
            config = _read_config(app.config["PRINT_CONFIG_PATH"])
        except InvalidConfig as e:
            return _error(f"Print configuration is invalid: {e}", 500)

        with db_session() as s:
            inv = _invoice_or_404(s, invoice_id)
            try:
                rendered = render(inv.to_document(), config)
            except InvalidConfig as e:
                return _error(str(e), 500)
            except (InvalidInvoice, ValueError) as e:
                return _error(str(e), 422)
            fname = pdf_filename(inv.invoice_number)

        return send_file(
            io.BytesIO(rendered.pdf_bytes),
            as_attachment=request.args.get("download") == "1",
            download_name=fname,
            mimetype="application/pdf",
        )

    @app.route("/invoices/<int:invoice_id>/pdf/generate", methods=["POST"])
    def invoice_pdf_generate(invoice_id):
        try:
            config = _read_config(app.config["PRINT_CONFIG_PATH"])
        except InvalidConfig as e:
            return _error(f"Print configuration is invalid: {e}", 500)

        with db_session() as s:
            _invoice_or_404(s, invoice_id)
            try:
                path = generate_and_store_pdf(s, invoice_id, config=config, exports_dir=app.config["EXPORTS_DIR"])
            except InvalidConfig as e:
                return _error(str(e), 500)
            except (InvalidInvoice, ValueError) as e:
                return _error(str(e), 422)
        return jsonify({"pdfPath": path})

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
