"""Prompt Library — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
Route handlers are thin: they turn form fields and query parameters into
core types and delegate to :class:`~promptlib.core.lifecycle.CardService`,
which owns every rule about how a card and its two images change together.

- **Card records** live in SQLite (:class:`~promptlib.core.card_repository.CardRepository`).
- **Images** live in a :class:`~promptlib.core.attachment_store.LocalAttachmentStore`
  and are served back through signed, time-limited URLs.
- **Errors** raised by the core are mapped to HTTP status codes in one
  exception handler (400 validation, 404 not found, 502 storage, 500
  persistence).

Endpoints
---------
========  ==============================  ====================================
Method    Path                            Purpose
========  ==============================  ====================================
GET       ``/api/cards``                  List cards with filters and sorting
POST      ``/api/cards``                  Create a card (multipart)
GET       ``/api/cards/{id}``             Single card
PUT       ``/api/cards/{id}``             Update fields and images (multipart)
DELETE    ``/api/cards/{id}``             Delete card and its images
PATCH     ``/api/cards/{id}/favorite``    Set favorite status
GET       ``/api/filter-options``         Distinct clients and models
GET       ``/api/export``                 JSON or CSV export
GET       ``/attachments/{path}``         Serve an image via a signed URL
========  ==============================  ====================================

Usage
-----
CLI (installed entry point)::

    promptlib

Direct invocation::

    python -m promptlib.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response

from promptlib import __version__
from promptlib.api.models import (
    CardResponse,
    DeleteResponse,
    FavoriteRequest,
    FilterOptionsResponse,
)
from promptlib.core.attachment_store import LocalAttachmentStore
from promptlib.core.config import config
from promptlib.core.errors import (
    AttachmentIOError,
    NotFound,
    PersistenceError,
    PromptLibError,
    ValidationError,
)
from promptlib.core.export import EXPORT_FORMATS, export_cards, export_filename, select_cards
from promptlib.core.lifecycle import CardService
from promptlib.core.models import (
    REMOVE,
    UNCHANGED,
    Card,
    CardFields,
    ImageUpload,
    Replace,
    SlotIntent,
)
from promptlib.core.query import build_filter_spec

logger = logging.getLogger(__name__)

# Most specific classes first; InvalidSlotTransition resolves via ValidationError.
ERROR_STATUS_CODES: dict[type[PromptLibError], int] = {
    ValidationError: 400,
    NotFound: 404,
    AttachmentIOError: 502,
    PersistenceError: 500,
}

# Edit form keys -> card field names.
UPDATE_FORM_FIELDS: dict[str, str] = {
    "prompt": "prompt",
    "metadata": "metadata",
    "client": "client",
    "model": "model",
    "seed": "seed",
    "llmUsed": "llm_used",
    "notes": "notes",
}

# Stored objects are only ever served with one of these types.
ATTACHMENT_MEDIA_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
}


# ---------------------------------------------------------------------------
# Application lifecycle: card service setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Builds a :class:`CardService` from the global configuration unless
        one was injected through :func:`create_app`.

    On shutdown:
        Waits for queued image deletions and stops the cleanup workers of a
        service this lifespan created.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    owns_service = getattr(app.state, "card_service", None) is None
    if owns_service:
        store = LocalAttachmentStore(
            config.attachments_dir,
            config.url_signing_secret,
            url_prefix=config.attachments_url_prefix,
        )
        app.state.card_service = CardService.from_config(config, store)
        logger.info("CardService initialised.")

    yield  # Application runs here.

    if owns_service:
        app.state.card_service.close()
        app.state.card_service = None
        logger.info("CardService closed on shutdown.")


def get_service(request: Request) -> CardService:
    """Dependency returning the application's :class:`CardService`."""
    return request.app.state.card_service


async def handle_promptlib_error(request: Request, exc: PromptLibError) -> JSONResponse:
    """Translate a core error into a JSON error response."""
    status_code = next(
        (ERROR_STATUS_CODES[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS_CODES),
        500,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    content: dict = {"detail": str(exc)}
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field
    return JSONResponse(status_code=status_code, content=content)


# ---------------------------------------------------------------------------
# Request helpers.
# ---------------------------------------------------------------------------


async def _read_upload(upload: UploadFile | None) -> ImageUpload | None:
    """Read a multipart file into an :class:`ImageUpload`.

    Browsers send an empty, nameless part for an untouched file input; that
    counts as no file.
    """
    if upload is None or not upload.filename:
        return None
    data = await upload.read()
    return ImageUpload(
        filename=upload.filename,
        content_type=upload.content_type or "",
        data=data,
    )


def _slot_intent(new_file: ImageUpload | None, delete_requested: bool) -> SlotIntent:
    """Map the edit form's per-slot controls to a slot intent.

    A new file always means replace.  The delete flag without a file is a
    bare removal, which the core rejects for required slots.
    """
    if new_file is not None:
        return Replace(new_file)
    if delete_requested:
        return REMOVE
    return UNCHANGED


def _submitted_text_fields(form: Mapping[str, Any]) -> dict[str, Any]:
    """Collect the editable text fields actually present in an edit form.

    Raises:
        ValidationError: If a text field was sent as a file
    """
    updates: dict[str, Any] = {}
    for key, name in UPDATE_FORM_FIELDS.items():
        if key not in form:
            continue
        value = form[key]
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a text value", field=name)
        updates[name] = value
    return updates


def _card_response(service: CardService, card: Card) -> CardResponse:
    """Attach signed image URLs to a card."""
    try:
        output_url, reference_url = service.image_urls(card)
    except AttachmentIOError as e:
        logger.warning(f"Could not sign image URLs for card {card.id}: {e}")
        output_url = reference_url = None
    return CardResponse.from_card(card, output_url, reference_url)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/api/cards", response_model=list[CardResponse])
def list_cards(
    client: str | None = None,
    model: str | None = None,
    favorites: bool = False,
    sort_by: str | None = Query(default=None, alias="sortBy"),
    service: CardService = Depends(get_service),
) -> list[CardResponse]:
    """Return cards matching the filters.

    Args:
        client: Exact client to match (``all`` or empty for any).
        model: Exact model to match (``all`` or empty for any).
        favorites: If ``True``, return only favorited cards.
        sort_by: ``newest`` (default) or ``oldest``.

    Returns:
        Matching cards with signed image URLs.
    """
    spec = build_filter_spec(client, model, favorites, sort_by)
    return [_card_response(service, card) for card in service.list_cards(spec)]


@router.post("/api/cards", response_model=CardResponse, status_code=201)
async def create_card(
    output_image: UploadFile | None = File(default=None, alias="outputImage"),
    reference_image: UploadFile | None = File(default=None, alias="referenceImage"),
    prompt: str = Form(default=""),
    metadata: str = Form(default=""),
    client: str = Form(default=""),
    model: str = Form(default=""),
    seed: str = Form(default=""),
    llm_used: str | None = Form(default=None, alias="llmUsed"),
    notes: str | None = Form(default=None),
    is_favorited: bool = Form(default=False, alias="isFavorited"),
    service: CardService = Depends(get_service),
) -> CardResponse:
    """Create a card from form fields and both images.

    Raises:
        ValidationError: (400) missing field, missing image, or a file that
            violates the upload policy.
    """
    fields = CardFields(
        prompt=prompt,
        metadata=metadata,
        client=client,
        model=model,
        seed=seed,
        llm_used=llm_used,
        notes=notes,
        is_favorited=is_favorited,
    )
    output_file = await _read_upload(output_image)
    reference_file = await _read_upload(reference_image)

    card = await run_in_threadpool(service.create_card, fields, output_file, reference_file)
    return _card_response(service, card)


@router.get("/api/cards/{card_id}", response_model=CardResponse)
def get_card(card_id: str, service: CardService = Depends(get_service)) -> CardResponse:
    """Return a single card by id."""
    return _card_response(service, service.get_card(card_id))


@router.put("/api/cards/{card_id}", response_model=CardResponse)
async def update_card(
    card_id: str,
    request: Request,
    output_image: UploadFile | None = File(default=None, alias="outputImage"),
    reference_image: UploadFile | None = File(default=None, alias="referenceImage"),
    delete_output_image: bool = Form(default=False, alias="deleteOutputImage"),
    delete_reference_image: bool = Form(default=False, alias="deleteReferenceImage"),
    is_favorited: bool | None = Form(default=None, alias="isFavorited"),
    service: CardService = Depends(get_service),
) -> CardResponse:
    """Update a card's fields and images.

    Only text fields present in the form are changed, and a present but
    empty value is validated like any other (so ``notes`` can be cleared and
    an empty ``prompt`` is rejected).  For each image slot, sending a file
    replaces the image; sending only the delete flag is rejected because
    both images are required.
    """
    field_updates = _submitted_text_fields(await request.form())
    if is_favorited is not None:
        field_updates["is_favorited"] = is_favorited

    output_intent = _slot_intent(await _read_upload(output_image), delete_output_image)
    reference_intent = _slot_intent(await _read_upload(reference_image), delete_reference_image)

    card = await run_in_threadpool(
        service.update_card, card_id, field_updates, output_intent, reference_intent
    )
    return _card_response(service, card)


@router.delete("/api/cards/{card_id}", response_model=DeleteResponse)
def delete_card(card_id: str, service: CardService = Depends(get_service)) -> DeleteResponse:
    """Delete a card.  Its images are removed in the background."""
    service.delete_card(card_id)
    return DeleteResponse(deleted=card_id)


@router.patch("/api/cards/{card_id}/favorite", response_model=CardResponse)
def set_favorite(
    card_id: str,
    req: FavoriteRequest,
    service: CardService = Depends(get_service),
) -> CardResponse:
    """Set the favorite status of a card."""
    return _card_response(service, service.set_favorite(card_id, req.is_favorited))


@router.get("/api/filter-options", response_model=FilterOptionsResponse)
def filter_options(service: CardService = Depends(get_service)) -> FilterOptionsResponse:
    """Return distinct clients and models for the filter dropdowns."""
    return FilterOptionsResponse.from_options(service.filter_options())


@router.get("/api/export")
def export(
    format: str = "json",
    ids: list[str] | None = Query(default=None),
    client: str | None = None,
    model: str | None = None,
    favorites: bool = False,
    sort_by: str | None = Query(default=None, alias="sortBy"),
    service: CardService = Depends(get_service),
) -> Response:
    """Download cards as JSON or CSV.

    Args:
        format: ``json`` or ``csv``.
        ids: Optional selection of card ids; all listed cards when omitted.
        client: Same as ``GET /api/cards``.
        model: Same as ``GET /api/cards``.
        favorites: Same as ``GET /api/cards``.
        sort_by: Same as ``GET /api/cards``.
    """
    spec = build_filter_spec(client, model, favorites, sort_by)
    cards = select_cards(service.list_cards(spec), ids)
    body = export_cards(cards, format)
    fmt = format.lower()
    return Response(
        content=body,
        media_type=EXPORT_FORMATS[fmt],
        headers={"Content-Disposition": f'attachment; filename="{export_filename(fmt)}"'},
    )


def serve_attachment(
    object_path: str,
    expires: int,
    signature: str,
    service: CardService = Depends(get_service),
) -> FileResponse:
    """Serve a stored image if the URL signature is valid and unexpired.

    Raises:
        HTTPException: 403 for a bad or expired signature, 404 if the object
            is missing or the store cannot serve files.
    """
    store = service.store
    if not isinstance(store, LocalAttachmentStore):
        raise HTTPException(status_code=404, detail="Attachment not found")
    if not store.verify_signature(object_path, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    try:
        file_path = store.open(object_path)
    except AttachmentIOError as e:
        raise HTTPException(status_code=404, detail="Attachment not found") from e
    return FileResponse(
        file_path,
        media_type=ATTACHMENT_MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream"),
        headers={"X-Content-Type-Options": "nosniff"},
    )


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------


def create_app(service: CardService | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Pre-built card service (tests inject one backed by temporary
            directories).  When omitted, the lifespan builds one from the
            global configuration.

    Returns:
        The configured application.
    """
    application = FastAPI(
        title="Prompt Library",
        description="Catalog of prompt cards with output and reference images.",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.card_service = service

    # Allow cross-origin requests so a frontend can be served from a different
    # port during development.
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(PromptLibError, handle_promptlib_error)
    application.include_router(router)
    application.add_api_route(
        f"{config.attachments_url_prefix.rstrip('/')}/{{object_path:path}}",
        serve_attachment,
        methods=["GET"],
        response_class=FileResponse,
    )
    return application


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~promptlib.core.config.config` (which
    loads from ``PROMPTLIB_SERVER_HOST`` and ``PROMPTLIB_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:7860``.

    This function is registered as the ``promptlib`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "promptlib.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
