"""
SnapGallery API.

Routes:
- Auth: sign-up / sign-in passthrough to the identity provider
- Images: upload, listing, search, detail, colors, similar, AI retry
- System: health
"""

import logging
import re
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

from .blobstore import BlobStore, build_blob_store
from .config import Settings
from .errors import (
    AuthError,
    GalleryError,
    ImageNotFound,
    UpstreamFailure,
    ValidationError,
)
from .hateoas import build_pagination_links, build_paginated_response
from .identity import IdentityProvider
from .models.schemas import (
    AuthenticatedUser,
    ColorsResponse,
    CredentialsRequest,
    HealthResponse,
    ImageItem,
    PaginatedResponse,
    RetryResponse,
    SessionResponse,
    SimilarResponse,
    UploadBatchResponse,
    UploadedImage,
    UploadFailedResponse,
    UploadFailure,
)
from .search import SearchEngine
from .search.pagination import normalize_sort
from .services import (
    AIProcessingPipeline,
    IncomingFile,
    RetryController,
    TaskDispatcher,
    UploadOrchestrator,
)
from .storage import MetadataStore
from .vision import BaseVisionProvider, OpenAIVisionProvider

logger = logging.getLogger(__name__)

_IMAGE_ID_RE = re.compile(r"[0-9]+")


def parse_image_id(raw: str) -> int:
    """
    Parse a path image id.

    Raises:
        ValidationError: If ``raw`` is not a positive integer
    """
    if not _IMAGE_ID_RE.fullmatch(raw or "") or int(raw) <= 0:
        raise ValidationError("Invalid image ID")
    return int(raw)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MetadataStore] = None,
    blob_store: Optional[BlobStore] = None,
    vision: Optional[BaseVisionProvider] = None,
    identity: Optional[IdentityProvider] = None,
    dispatcher: Optional[TaskDispatcher] = None,
) -> FastAPI:
    """
    Create SnapGallery FastAPI application.

    Collaborators not passed in are built from ``settings``.
    """
    if settings is None:
        settings = Settings()
    assert settings is not None, "Settings must be provided or created"

    if store is None:
        store = MetadataStore(settings)
    if blob_store is None:
        blob_store = build_blob_store(settings)
    if vision is None:
        vision = OpenAIVisionProvider.from_settings(settings)
    if identity is None:
        identity = IdentityProvider.from_settings(settings)
    if dispatcher is None:
        dispatcher = TaskDispatcher()

    pipeline = AIProcessingPipeline(store, vision, settings.enable_embeddings)
    uploader = UploadOrchestrator(store, blob_store, pipeline, dispatcher, settings)
    retrier = RetryController(store, blob_store, pipeline, dispatcher)
    engine = SearchEngine(store, settings)
    started_at = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if dispatcher.pending:
            logger.info(f"Waiting for {dispatcher.pending} background tasks")
        await dispatcher.drain()

    app = FastAPI(
        title="SnapGallery API",
        description="Image gallery with AI-generated descriptions, tags and colors",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_credentials=settings.cors_origin != "*",
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================
    # ERROR RENDERING
    # ========================================

    @app.exception_handler(GalleryError)
    async def gallery_error_handler(request: Request, exc: GalleryError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else None
        return JSONResponse(
            status_code=400, content={"error": message or "Invalid request"}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    # ========================================
    # DEPENDENCIES
    # ========================================

    bearer = HTTPBearer(auto_error=False)

    async def current_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    ) -> AuthenticatedUser:
        """Resolve the bearer token to a user."""
        if credentials is None or not credentials.credentials:
            raise AuthError()
        return await identity.get_user(credentials.credentials)

    # ========================================
    # AUTH
    # ========================================

    @app.post(
        "/auth/signup",
        status_code=201,
        tags=["Auth"],
        summary="Sign up",
        description="Register a new account with email and password.",
    )
    async def sign_up(request: CredentialsRequest):
        """Register a new account."""
        try:
            return await identity.sign_up(request.email, request.password)
        except GalleryError:
            raise
        except Exception as e:
            logger.error(f"Signup failed: {e}")
            raise UpstreamFailure("Signup failed") from e

    @app.post(
        "/auth/signin",
        response_model=SessionResponse,
        tags=["Auth"],
        summary="Sign in",
        description="Exchange email and password for a session.",
    )
    async def sign_in(request: CredentialsRequest) -> SessionResponse:
        """Sign in with email and password."""
        try:
            return await identity.sign_in(request.email, request.password)
        except GalleryError:
            raise
        except Exception as e:
            logger.error(f"Signin failed: {e}")
            raise UpstreamFailure("Signin failed") from e

    # ========================================
    # IMAGES
    # ========================================

    @app.get(
        "/images",
        response_model=PaginatedResponse,
        tags=["Images"],
        summary="List images",
        description="Paginated list of the caller's images with metadata.",
    )
    async def list_images(
        limit: Optional[str] = None,
        offset: Optional[str] = None,
        sort: Optional[str] = None,
        user: AuthenticatedUser = Depends(current_user),
    ) -> PaginatedResponse:
        """List images with pagination."""
        try:
            result = engine.list_images(user.user_id, limit, offset, sort)
            links = build_pagination_links(
                "/images", result, sort=normalize_sort(sort).value
            )
            return build_paginated_response(result.items, result, links)
        except GalleryError:
            raise
        except Exception as e:
            logger.error(f"Image listing failed: {e}")
            raise UpstreamFailure("Failed to list images") from e

    @app.get(
        "/images/search",
        response_model=PaginatedResponse,
        tags=["Images"],
        summary="Search images",
        description="Search by text and/or color, with pagination.",
    )
    async def search_images(
        q: Optional[str] = None,
        color: Optional[str] = None,
        dominant_only: Optional[str] = Query(None, alias="dominantOnly"),
        limit: Optional[str] = None,
        offset: Optional[str] = None,
        sort: Optional[str] = None,
        user: AuthenticatedUser = Depends(current_user),
    ) -> PaginatedResponse:
        """Search images."""
        try:
            result = engine.search_images(
                user.user_id,
                query=q,
                color=color,
                dominant_only=dominant_only == "true",
                limit=limit,
                offset=offset,
                sort=sort,
            )
            links = build_pagination_links(
                "/images/search",
                result,
                sort=normalize_sort(sort).value,
                query_params={"q": q, "color": color, "dominantOnly": dominant_only},
            )
            return build_paginated_response(result.items, result, links)
        except GalleryError:
            raise
        except Exception as e:
            logger.error(f"Image search failed: {e}")
            raise UpstreamFailure("Search failed") from e

    @app.get(
        "/images/colors",
        response_model=ColorsResponse,
        tags=["Images"],
        summary="Distinct colors",
        description="Distinct colors across the caller's analyzed images.",
    )
    async def get_colors(
        limit: Optional[str] = None,
        user: AuthenticatedUser = Depends(current_user),
    ) -> ColorsResponse:
        """List distinct colors."""
        try:
            return engine.get_distinct_colors(user.user_id, limit)
        except GalleryError:
            raise
        except Exception as e:
            logger.error(f"Color listing failed: {e}")
            raise UpstreamFailure("Failed to fetch colors") from e

    @app.post(
        "/images/upload",
        status_code=201,
        response_model=UploadBatchResponse,
        tags=["Images"],
        summary="Upload images",
        description="Upload one or more images; AI metadata is generated afterwards.",
        responses={
            207: {"model": UploadBatchResponse},
            500: {"model": UploadFailedResponse},
        },
    )
    async def upload_images(
        images: Optional[List[UploadFile]] = File(None),
        user: AuthenticatedUser = Depends(current_user),
    ):
        """Upload a batch of images, one at a time."""
        if not images:
            raise ValidationError("No files uploaded")
        if len(images) > settings.max_files_per_upload:
            raise ValidationError(
                f"Maximum {settings.max_files_per_upload} files allowed per upload"
            )

        uploaded: List[UploadedImage] = []
        failures: List[UploadFailure] = []
        last_error: Optional[GalleryError] = None

        for upload in images:
            filename = upload.filename or "unknown"
            try:
                incoming = IncomingFile(
                    filename=upload.filename,
                    content_type=upload.content_type,
                    data=await upload.read(),
                )
                uploaded.append(await uploader.upload_image(incoming, user.user_id))
            except GalleryError as e:
                failures.append(UploadFailure(filename=filename, error=e.message))
                last_error = e
            except Exception as e:
                logger.error(f"Image upload failed for {filename}: {e}")
                failures.append(
                    UploadFailure(filename=filename, error="Image upload failed")
                )
                last_error = None
            finally:
                await upload.close()

        logger.info(
            f"Upload batch for user {user.user_id}: "
            f"{len(uploaded)} succeeded, {len(failures)} failed"
        )

        if not uploaded:
            if len(images) == 1:
                raise last_error or UpstreamFailure("Image upload failed")
            body = UploadFailedResponse(error="All uploads failed", errors=failures)
            return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

        body = UploadBatchResponse(images=uploaded, errors=failures or None)
        content = body.model_dump(mode="json")
        if not failures:
            content.pop("errors")
            return JSONResponse(status_code=201, content=content)
        return JSONResponse(status_code=207, content=content)

    @app.get(
        "/images/{image_id}",
        response_model=ImageItem,
        tags=["Images"],
        summary="Get image",
        description="Image with its metadata.",
    )
    async def get_image(
        image_id: str,
        user: AuthenticatedUser = Depends(current_user),
    ) -> ImageItem:
        """Get one image."""
        parsed_id = parse_image_id(image_id)
        try:
            item = engine.get_image(parsed_id, user.user_id)
        except Exception as e:
            logger.error(f"Image retrieval failed: {e}")
            raise UpstreamFailure("Failed to retrieve image") from e

        if item is None:
            raise ImageNotFound()
        return item

    @app.post(
        "/images/{image_id}/retry-ai",
        status_code=202,
        response_model=RetryResponse,
        tags=["Images"],
        summary="Retry AI processing",
        description="Re-run AI analysis for an image that has not completed.",
    )
    async def retry_ai(
        image_id: str,
        user: AuthenticatedUser = Depends(current_user),
    ) -> RetryResponse:
        """Retry AI processing."""
        parsed_id = parse_image_id(image_id)
        try:
            return await retrier.retry(parsed_id, user.user_id)
        except GalleryError:
            raise
        except Exception as e:
            logger.error(f"AI retry failed for image {parsed_id}: {e}")
            raise UpstreamFailure("Failed to retry AI processing") from e

    @app.get(
        "/images/{image_id}/similar",
        response_model=SimilarResponse,
        tags=["Images"],
        summary="Similar images",
        description="Other images sharing tags or colors, most similar first.",
    )
    async def similar_images(
        image_id: str,
        limit: Optional[str] = None,
        user: AuthenticatedUser = Depends(current_user),
    ) -> SimilarResponse:
        """Find similar images."""
        parsed_id = parse_image_id(image_id)
        try:
            return engine.find_similar(parsed_id, user.user_id, limit)
        except GalleryError:
            raise
        except Exception as e:
            logger.error(f"Similar image lookup failed for {parsed_id}: {e}")
            raise UpstreamFailure("Failed to find similar images") from e

    # ========================================
    # SYSTEM
    # ========================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
        description="Get system health status.",
    )
    async def health_check() -> HealthResponse:
        """Get system health status."""
        return HealthResponse(status="ok", uptime=time.time() - started_at)

    return app
