from __future__ import annotations

import itertools
from typing import Any, Iterable, Iterator, Tuple

from flask import Response, current_app, jsonify, request, stream_with_context

from ..db_utils import ensure_database_schema
from ..exporters import EXPORTERS, export_book
from ..services.book_types import BookConfiguration, Outline
from ..services.chapter_stream import encode_sse, stream_chapter
from ..services.errors import (
    BookGenerationError,
    ConfigurationError,
    ExportError,
    MissingCredentialsError,
    PersistenceFailure,
    PromptBuildError,
    RegenerationNotConfirmed,
    RunStateError,
    UpstreamParseError,
)
from ..services.library import BookLibrary, search_books, sort_books
from ..services.orchestrator import GenerationOrchestrator, RunRegistry
from ..services.revision import improve_description, revise_chapter
from ..services.story_outline import generate_outline
from ..services.text_utils import SUMMARY_CHAR_LIMIT
from ..services.validation import validate_configuration
from . import bp

REGISTRY_KEY = "bookgen_runs"

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


# ---------------- helpers ----------------
def _json_error(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"exito": False, "error": message}), status


def _status_for(exc: BookGenerationError) -> int:
    if isinstance(exc, MissingCredentialsError):
        return 500
    if isinstance(exc, (ConfigurationError, RegenerationNotConfirmed, PromptBuildError, ExportError)):
        return 400
    if isinstance(exc, RunStateError):
        return 409
    if isinstance(exc, UpstreamParseError):
        return 502
    return 500


def _error_response(exc: BookGenerationError) -> Tuple[Response, int]:
    status = _status_for(exc)
    if status >= 500:
        current_app.logger.warning("Request failed with %s: %s", exc.__class__.__name__, exc)
    return _json_error(str(exc) or "Error desconocido", status)


def _sse_response(events: Iterable[Any]) -> Response:
    def generate() -> Iterator[str]:
        try:
            for event in events:
                yield encode_sse(event)
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

    return Response(stream_with_context(generate()), mimetype="text/event-stream", headers=SSE_HEADERS)


def _registry() -> RunRegistry:
    registry = current_app.extensions.get(REGISTRY_KEY)
    if registry is None:
        limit = current_app.config.get("SUMMARY_CHAR_LIMIT", SUMMARY_CHAR_LIMIT)
        registry = RunRegistry(
            lambda: GenerationOrchestrator(summary_limit=limit),
            max_runs=current_app.config.get("MAX_ACTIVE_RUNS"),
        )
        current_app.extensions[REGISTRY_KEY] = registry
    return registry


def _run_or_404(run_id: str):
    orchestrator = _registry().get(run_id)
    if orchestrator is None:
        return None, _json_error("Ejecución no encontrada", 404)
    return orchestrator, None


# ---------------- one-shot generation ----------------
@bp.route("/outline", methods=["POST"])
def outline():
    payload = request.get_json(silent=True) or {}
    try:
        config = validate_configuration(payload.get("configuracion", payload))
        result = generate_outline(config)
    except BookGenerationError as exc:
        return _error_response(exc)
    except Exception:  # pragma: no cover - defensive logging
        current_app.logger.exception("Unexpected error while generating the outline")
        return _json_error("Error desconocido", 500)

    return jsonify(
        {
            "exito": True,
            "outline": result.outline.to_dict(),
            "advertencia": result.count_mismatch,
        }
    )


@bp.route("/chapter", methods=["POST"])
def chapter():
    payload = request.get_json(silent=True) or {}
    try:
        number = int(payload.get("numeroCapitulo"))
    except (TypeError, ValueError):
        return _json_error("Número de capítulo inválido", 400)

    outline_data = payload.get("outline")
    config_data = payload.get("configuracion")
    summaries = payload.get("resumenesAnteriores") or []
    if not isinstance(outline_data, dict) or not isinstance(config_data, dict) or not isinstance(summaries, list):
        return _json_error("Parámetros requeridos faltantes", 400)

    events = stream_chapter(
        number,
        Outline.from_dict(outline_data),
        BookConfiguration.from_dict(config_data),
        [str(summary) for summary in summaries],
    )
    # Prompt and credential errors surface before the first event, while a
    # JSON status can still be returned.
    try:
        first = next(events)
    except BookGenerationError as exc:
        return _error_response(exc)

    return _sse_response(itertools.chain([first], events))


@bp.route("/revise-chapter", methods=["POST"])
def revise():
    payload = request.get_json(silent=True) or {}
    try:
        content = revise_chapter(
            payload.get("contenidoCapitulo") or "",
            payload.get("instruccionesRevision") or "",
            model=payload.get("modelo"),
        )
    except BookGenerationError as exc:
        return _error_response(exc)

    return jsonify({"exito": True, "contenido": content})


@bp.route("/improve-prompt", methods=["POST"])
def improve_prompt():
    payload = request.get_json(silent=True) or {}
    try:
        improved = improve_description(payload.get("prompt") or "", model=payload.get("modelo"))
    except BookGenerationError as exc:
        return _error_response(exc)

    return jsonify({"exito": True, "promptMejorado": improved})


# ---------------- orchestrated runs ----------------
@bp.route("/runs", methods=["POST"])
def create_run():
    payload = request.get_json(silent=True) or {}
    try:
        config = validate_configuration(payload.get("configuracion", payload))
    except BookGenerationError as exc:
        return _error_response(exc)

    registry = _registry()
    run_id, orchestrator = registry.create()
    registry.attach_stream(run_id, orchestrator.run(config))
    current_app.logger.info("Created generation run %s (%d chapters).", run_id, config.chapter_count)
    return jsonify({"exito": True, "runId": run_id, "estado": orchestrator.state.to_dict()}), 201


@bp.route("/runs/<run_id>", methods=["GET"])
def run_state(run_id: str):
    orchestrator, error = _run_or_404(run_id)
    if error:
        return error
    return jsonify({"exito": True, "estado": orchestrator.state.to_dict()})


@bp.route("/runs/<run_id>", methods=["DELETE"])
def delete_run(run_id: str):
    if not _registry().discard(run_id):
        return _json_error("Ejecución no encontrada", 404)
    current_app.logger.info("Deleted generation run %s.", run_id)
    return jsonify({"exito": True})


@bp.route("/runs/<run_id>/events", methods=["GET"])
def run_events(run_id: str):
    orchestrator, error = _run_or_404(run_id)
    if error:
        return error

    events = _registry().take_stream(run_id)
    if events is None:
        return _json_error("La ejecución no tiene eventos pendientes", 409)
    return _sse_response(events)


@bp.route("/runs/<run_id>/chapters/<int:number>/regenerate", methods=["POST"])
def regenerate(run_id: str, number: int):
    orchestrator, error = _run_or_404(run_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    try:
        events = orchestrator.regenerate_chapter(number, confirm=payload.get("confirmar") is True)
    except BookGenerationError as exc:
        return _error_response(exc)
    return _sse_response(events)


@bp.route("/runs/<run_id>/chapters/<int:number>", methods=["PUT"])
def edit_chapter(run_id: str, number: int):
    orchestrator, error = _run_or_404(run_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    content = payload.get("contenido")
    if not isinstance(content, str):
        return _json_error("El contenido del capítulo es requerido", 400)

    try:
        updated = orchestrator.edit_chapter(number, content)
    except BookGenerationError as exc:
        return _error_response(exc)
    return jsonify({"exito": True, "capitulo": updated.to_dict(), "progreso": orchestrator.state.progress})


@bp.route("/runs/<run_id>/chapters/<int:number>/improve", methods=["POST"])
def improve_chapter(run_id: str, number: int):
    orchestrator, error = _run_or_404(run_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    try:
        updated = orchestrator.improve_chapter(number, payload.get("instrucciones") or "")
    except BookGenerationError as exc:
        return _error_response(exc)
    return jsonify({"exito": True, "capitulo": updated.to_dict()})


@bp.route("/runs/<run_id>/save", methods=["POST"])
def save_run(run_id: str):
    orchestrator, error = _run_or_404(run_id)
    if error:
        return error

    try:
        book = orchestrator.save(BookLibrary())
    except BookGenerationError as exc:
        return _error_response(exc)
    return jsonify({"exito": True, "libro": book.to_payload()}), 201


@bp.route("/runs/<run_id>/reset", methods=["POST"])
def reset_run(run_id: str):
    orchestrator, error = _run_or_404(run_id)
    if error:
        return error

    parked = _registry().take_stream(run_id)
    if parked is not None:
        parked.close()
    state = orchestrator.reset()
    return jsonify({"exito": True, "estado": state.to_dict()})


# ---------------- library ----------------
@bp.route("/books", methods=["GET"])
def list_books():
    try:
        books = BookLibrary().list()
        books = search_books(books, request.args.get("q", ""))
        books = sort_books(books, request.args.get("orden", "fecha"))
    except BookGenerationError as exc:
        return _error_response(exc)
    return jsonify({"exito": True, "libros": [book.to_payload() for book in books]})


@bp.route("/books", methods=["POST"])
def create_book():
    payload = request.get_json(silent=True) or {}
    try:
        book = BookLibrary().create_from_payload(payload)
    except BookGenerationError as exc:
        return _error_response(exc)
    return jsonify({"exito": True, "libro": book.to_payload()}), 201


@bp.route("/books", methods=["DELETE"])
def delete_book():
    book_id = (request.args.get("id") or "").strip()
    if not book_id:
        return _json_error("ID de libro no proporcionado", 400)

    try:
        deleted = BookLibrary().delete(book_id)
    except BookGenerationError as exc:
        return _error_response(exc)
    if not deleted:
        return _json_error("Libro no encontrado", 404)
    return jsonify({"exito": True})


@bp.route("/books/stats", methods=["GET"])
def book_stats():
    try:
        stats = BookLibrary().stats()
    except PersistenceFailure as exc:
        return _error_response(exc)
    return jsonify({"exito": True, "estadisticas": stats.to_dict()})


# ---------------- export ----------------
@bp.route("/export/<fmt>", methods=["POST"])
def export(fmt: str):
    if fmt not in EXPORTERS:
        return _json_error(f"Formato de exportación no soportado: {fmt}", 404)

    payload = request.get_json(silent=True) or {}
    try:
        result = export_book(
            fmt,
            payload.get("titulo") or "",
            payload.get("sinopsis") or "",
            payload.get("capitulos") or [],
            payload.get("configuracion") or {},
        )
    except BookGenerationError as exc:
        return _error_response(exc)

    current_app.logger.info("Exported '%s' as %s (%d bytes).", result.filename, fmt, len(result.data))
    return Response(
        result.data,
        mimetype=result.mimetype,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


@bp.route("/init-db", methods=["GET"])
def init_db():
    try:
        ensure_database_schema()
    except Exception:  # pragma: no cover - defensive logging
        current_app.logger.exception("Unable to initialise the database")
        return _json_error("Error inicializando la base de datos", 500)
    return jsonify({"exito": True, "mensaje": "Base de datos inicializada correctamente"})
