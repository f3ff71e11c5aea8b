"""Coloring Page Studio — FastAPI Application.

This module builds the FastAPI ``app`` instance, all REST API routes, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`colorpage.core.config.config`
  (``COLORPAGE_*`` environment variables).
- **Clients** (image vendor, object store, Redis ledger) are created once in
  the lifespan handler and kept on ``app.state``.  :func:`create_app` accepts
  ready-made instances so tests can inject fakes.
- **Image requests** are delegated to
  :class:`~colorpage.api.orchestrator.ImageOrchestrator`; payments to
  :mod:`colorpage.api.billing`.
- **Errors** derive from :class:`~colorpage.core.exceptions.ColorPageError`
  and are rendered as ``{"error": message}`` by one exception handler.
  Anything else is logged and rendered as a generic 500 in the same shape.

Endpoints
---------
========  ======================================  ==============================
Method    Path                                    Purpose
========  ======================================  ==============================
GET       ``/api/config``                         Version, storage mode, pricing
POST      ``/api/images``                         Generate or edit images
GET       ``/api/image/{file_id}``                Stored image bytes
GET       ``/api/packages``                       Credit package catalog
POST      ``/api/profiles``                       Create a profile on signup
GET       ``/api/profiles/{user_id}``             Profile and balance
POST      ``/api/profiles/{user_id}/credits/...`` Deduct credits
POST      ``/api/stripe/checkout``                Start a credit purchase
POST      ``/api/stripe/webhook``                 Payment notifications
GET       ``/api/history``                        Generation history
DELETE    ``/api/history``                        Clear history
DELETE    ``/api/history/{timestamp}``            Delete one history entry
========  ======================================  ==============================

Usage
-----
CLI (installed entry point)::

    colorpage

Direct invocation::

    python -m colorpage.api.main
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from redis.asyncio import Redis

from colorpage import __version__
from colorpage.api import billing
from colorpage.api.models import (
    CheckoutRequest,
    CheckoutResponse,
    CreditBalanceResponse,
    CreditDeductRequest,
    HistoryEntry,
    ImagesResponse,
    ProfileCreateRequest,
    ProfileResponse,
)
from colorpage.api.orchestrator import (
    ImageOrchestrator,
    ImageRequest,
    ImagesResult,
    deduct_after_generation,
    ensure_credits,
    verify_password_hash,
)
from colorpage.core import history_store
from colorpage.core.config import ColorPageConfig, config
from colorpage.core.exceptions import ColorPageError, ConfigurationError, NotFoundError
from colorpage.core.image_client import ImageClient
from colorpage.core.ledger import CreditLedger
from colorpage.core.packages import CREDIT_PACKAGES
from colorpage.core.prompt_builder import BACKGROUNDS_BY_TYPE, MAX_PHOTOS, PAGE_TYPES
from colorpage.core.storage import ImageStore, build_image_store, validate_file_id

logger = logging.getLogger(__name__)

IMAGE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def _profile_response(profile: dict) -> ProfileResponse:
    return ProfileResponse(
        user_id=profile["user_id"],
        email=profile["email"],
        full_name=profile["full_name"],
        credits=profile["credits"],
        subscription_tier=profile["subscription_tier"],
    )


def _history_entry(result: ImagesResult, req: ImageRequest, mode_used: str, duration_ms: int):
    fields = req.fields
    params = result.params
    return HistoryEntry(
        timestamp=int(time.time() * 1000),
        images=[
            {"filename": image["filename"], "fileId": image.get("fileId")}
            for image in result.images
        ],
        storage_mode_used=mode_used,
        duration_ms=duration_ms,
        quality=params.get("quality") or fields.get("quality"),
        background=fields.get("background") or params.get("background"),
        moderation=params.get("moderation") or fields.get("moderation"),
        output_format=result.output_format,
        prompt=result.prompt,
        mode=result.mode,
        coloring_page_type=fields.get("coloringPageType"),
        orientation=fields.get("orientation"),
    )


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def get_config(request: Request) -> ColorPageConfig:
    return request.app.state.config


def get_ledger(request: Request) -> CreditLedger:
    ledger = request.app.state.ledger
    if ledger is None:
        raise ConfigurationError("Server configuration error: credit ledger unavailable.")
    return ledger


def get_image_store(request: Request) -> ImageStore:
    image_store = request.app.state.image_store
    if image_store is None:
        raise ConfigurationError("Server configuration error: image storage unavailable.")
    return image_store


def get_image_client(request: Request) -> ImageClient:
    image_client = request.app.state.image_client
    if image_client is None:
        logger.error("Image API key not configured.")
        raise ConfigurationError("Server configuration error: API key not found.")
    return image_client


def create_app(
    cfg: ColorPageConfig | None = None,
    *,
    image_client: ImageClient | None = None,
    ledger: CreditLedger | None = None,
    image_store: ImageStore | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        cfg: Configuration; the global ``config`` when omitted.
        image_client: Vendor client.  Built from ``cfg`` at startup when
            omitted and an API key is configured.
        ledger: Credit ledger.  A Redis connection to ``cfg.redis_url`` is
            opened at startup when omitted.
        image_store: Image persistence.  Built for ``cfg.image_storage_mode``
            at startup when omitted.

    Returns:
        The configured application.
    """
    cfg = cfg or config
    history_db = cfg.data_dir / history_store.HISTORY_FILENAME

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create missing clients on startup and close owned ones on shutdown."""
        # --- Startup -----------------------------------------------------------
        redis: Redis | None = None
        owned_client: ImageClient | None = None

        if app.state.ledger is None:
            redis = Redis.from_url(cfg.redis_url, decode_responses=True)
            app.state.ledger = CreditLedger(redis, signup_credits=cfg.signup_credits)
            logger.info("Credit ledger connected to Redis.")

        if app.state.image_store is None:
            try:
                app.state.image_store = build_image_store(cfg)
            except ConfigurationError as e:
                logger.error(f"Image storage not available: {e.message}")

        if app.state.image_client is None and cfg.openai_api_key:
            owned_client = ImageClient.from_config(cfg)
            app.state.image_client = owned_client
            logger.info(f"Image client initialised (model {cfg.image_model}).")

        yield  # Application runs here.

        # --- Shutdown ----------------------------------------------------------
        if owned_client is not None:
            await owned_client.close()
        if redis is not None:
            await redis.aclose()
            logger.info("Redis connection closed on shutdown.")

    app = FastAPI(
        title="Coloring Page Studio",
        description="Turn photos into printable coloring pages.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.image_client = image_client
    app.state.ledger = ledger
    app.state.image_store = image_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Error rendering.
    # -----------------------------------------------------------------------

    @app.exception_handler(ColorPageError)
    async def colorpage_error_handler(request: Request, exc: ColorPageError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        detail = errors[0]["msg"] if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": detail})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"{request.method} {request.url.path} raised an unhandled error: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # -----------------------------------------------------------------------
    # Routes.
    # -----------------------------------------------------------------------

    @app.get("/api/config")
    async def get_app_config(cfg: ColorPageConfig = Depends(get_config)) -> dict:
        """Return what the frontend needs before the first request.

        Returns:
            Dictionary with ``version``, ``storageMode``, ``passwordRequired``,
            ``creditsPerPage``, ``packages`` and ``coloringPageTypes`` (the
            backgrounds and photo limit of each page type).
        """
        return {
            "version": __version__,
            "storageMode": cfg.image_storage_mode,
            "passwordRequired": cfg.password_required,
            "creditsPerPage": cfg.credits_per_page,
            "packages": [package.to_dict() for package in CREDIT_PACKAGES],
            "coloringPageTypes": [
                {
                    "id": page_type,
                    "backgrounds": list(BACKGROUNDS_BY_TYPE[page_type]),
                    "maxPhotos": MAX_PHOTOS[page_type],
                }
                for page_type in PAGE_TYPES
            ],
        }

    @app.post("/api/images")
    async def create_images(
        request: Request,
        cfg: ColorPageConfig = Depends(get_config),
    ) -> dict:
        """Generate or edit images from a multipart form.

        A missing vendor key is rejected before the form is read, then the
        shared password is checked.  When the form carries a
        ``userId`` the balance is checked before the vendor call and the
        page cost is deducted after it; a failed deduction is reported in
        ``creditWarning`` while the images are still returned.

        Returns:
            :class:`ImagesResponse` as camelCase JSON.
        """
        image_client = get_image_client(request)
        form = await request.form()
        req = await ImageRequest.from_form(form)

        verify_password_hash(cfg.app_password, req.password_hash)
        orchestrator = ImageOrchestrator(image_client, get_image_store(request))

        ledger = None
        if req.user_id:
            ledger = get_ledger(request)
            await ensure_credits(ledger, req.user_id, cfg.credits_per_page)

        started = time.monotonic()
        result = await orchestrator.run(req)
        duration_ms = int((time.monotonic() - started) * 1000)

        response = ImagesResponse(images=result.images, usage=result.usage)
        if ledger is not None:
            remaining, warning = await deduct_after_generation(
                ledger, req.user_id, cfg.credits_per_page
            )
            response.credits = remaining
            response.credit_warning = warning

        if cfg.history_enabled:
            entry = _history_entry(result, req, orchestrator.image_store.mode, duration_ms)
            try:
                await asyncio.to_thread(
                    history_store.add_history_entry, history_db, entry.model_dump(by_alias=True)
                )
            except OSError as e:
                logger.error(f"Failed to record history entry: {e}")

        return response.model_dump(by_alias=True, exclude_none=True)

    @app.get("/api/image/{file_id:path}")
    async def get_stored_image(
        file_id: str,
        image_store: ImageStore = Depends(get_image_store),
    ) -> Response:
        """Return stored image bytes with a long-lived cache header.

        Raises:
            ValidationError: 400 for ids containing path characters.
            NotFoundError: 404 when no such image exists.
        """
        validate_file_id(file_id)
        stored = await image_store.fetch(file_id)
        return Response(
            content=stored.data,
            media_type=stored.content_type,
            headers={"Cache-Control": IMAGE_CACHE_CONTROL},
        )

    @app.get("/api/packages")
    async def list_packages() -> dict:
        return {"packages": [package.to_dict() for package in CREDIT_PACKAGES]}

    @app.post("/api/profiles", response_model=ProfileResponse)
    async def create_profile(
        req: ProfileCreateRequest,
        ledger: CreditLedger = Depends(get_ledger),
    ) -> ProfileResponse:
        """Create the profile for a newly signed-up user (idempotent)."""
        profile = await ledger.create_profile(req.user_id, req.email, req.full_name)
        return _profile_response(profile)

    @app.get("/api/profiles/{user_id}", response_model=ProfileResponse)
    async def get_profile(
        user_id: str,
        ledger: CreditLedger = Depends(get_ledger),
    ) -> ProfileResponse:
        profile = await ledger.get_profile(user_id)
        return _profile_response(profile)

    @app.post("/api/profiles/{user_id}/credits/deduct", response_model=CreditBalanceResponse)
    async def deduct_credits(
        user_id: str,
        req: CreditDeductRequest,
        ledger: CreditLedger = Depends(get_ledger),
    ) -> CreditBalanceResponse:
        """Remove credits after a generation the client paid for itself.

        Raises:
            InsufficientCreditsError: 402, balance unchanged.
        """
        balance = await ledger.deduct_credits(user_id, req.amount)
        return CreditBalanceResponse(user_id=user_id, credits=balance)

    @app.post("/api/stripe/checkout", response_model=CheckoutResponse)
    async def stripe_checkout(
        req: CheckoutRequest,
        request: Request,
        cfg: ColorPageConfig = Depends(get_config),
        ledger: CreditLedger = Depends(get_ledger),
    ) -> CheckoutResponse:
        origin = cfg.frontend_url or request.headers.get("origin") or str(request.base_url)
        url = await billing.create_checkout_session(
            ledger, cfg, req.user_id, req.package_id, origin
        )
        return CheckoutResponse(url=url)

    @app.post("/api/stripe/webhook")
    async def stripe_webhook(
        request: Request,
        cfg: ColorPageConfig = Depends(get_config),
    ) -> dict:
        """Apply a signed payment event.

        The raw body is read untouched so the signature can be verified.
        """
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        return await billing.handle_webhook(get_ledger(request), cfg, payload, signature)

    @app.get("/api/history")
    async def get_history() -> dict:
        return {"history": history_store.load_history(history_db)}

    @app.delete("/api/history")
    async def clear_history() -> dict:
        removed = history_store.clear_history(history_db)
        return {"success": True, "deleted": removed}

    @app.delete("/api/history/{timestamp}")
    async def delete_history_entry(timestamp: int) -> dict:
        if not history_store.delete_history_entry(history_db, timestamp):
            raise NotFoundError("History entry not found")
        return {"success": True, "deleted": timestamp}

    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~colorpage.core.config.config`
    (``COLORPAGE_SERVER_HOST``, ``COLORPAGE_SERVER_PORT``,
    ``COLORPAGE_LOG_LEVEL``).

    This function is registered as the ``colorpage`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "colorpage.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
