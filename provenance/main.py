import os
import json
import logging
import structlog
from typing import Any, List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from provenance import __version__, config
from provenance.core.database import create_registry
from provenance.core.errors import (
    BlobNotFound, MalformedInput, ManifestError, NotOwner, NotRegistered, ProvenanceError,
    RegistryConflict, SigningDeclined, UnknownNetwork, UnrecognizedFormat
)
from provenance.core.guard import KeyedLock
from provenance.core.signer import Ed25519Signer
from provenance.core.storage import create_blob_store
from provenance.models.registry import Binding, Receipt
from provenance.models.responses import BindManyRequest, BindRequest, ErrorResponse, HealthResponse
from provenance.models.verification import (
    BindOutcome, BindResult, Proof, RegistrationResult, VerificationResult
)
from provenance.services.bindings import BindingService
from provenance.services.cache import LookupCache
from provenance.services.platforms import supported_platforms
from provenance.services.registration import RegistrationService
from provenance.services.verification import VerificationEngine


def configure_logging(log_format: Optional[str] = None) -> None:
    """Configure structlog: JSON lines by default, console rendering for development."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if (log_format or config.LOG_FORMAT) == "console"
        else structlog.processors.JSONRenderer()
    )
    logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger()

# Collaborators, built at startup
signer = None
lookup_cache: Optional[LookupCache] = None
registration_service: Optional[RegistrationService] = None
binding_service: Optional[BindingService] = None
verification_engine: Optional[VerificationEngine] = None
registry = None
blob_store = None


def load_signer() -> Ed25519Signer:
    """Signing key from SIGNER_KEY_PATH, or an ephemeral key for development."""
    if config.SIGNER_KEY_PATH:
        loaded = Ed25519Signer.from_pem_file(config.SIGNER_KEY_PATH)
        logger.info("Signer key loaded", path=config.SIGNER_KEY_PATH, identity=loaded.identity)
        return loaded
    generated = Ed25519Signer.generate()
    logger.warning("SIGNER_KEY_PATH not set, using an ephemeral signing key",
                   identity=generated.identity)
    return generated


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    global signer, lookup_cache, registration_service, binding_service
    global verification_engine, registry, blob_store

    # Startup
    logger.info("Starting Proof of Creativity provenance API")
    try:
        registry = create_registry()
        blob_store = create_blob_store()
        signer = load_signer()
        lookup_cache = LookupCache()
        binding_service = BindingService(registry, lookup_cache)
        registration_service = RegistrationService(
            registry, blob_store, cache=lookup_cache, bindings=binding_service, guard=KeyedLock()
        )
        verification_engine = VerificationEngine(registry, blob_store, cache=lookup_cache)
        logger.info("Provenance services initialized", registry_backend=registry.backend,
                    blob_backend=blob_store.backend, default_network=config.DEFAULT_NETWORK)
    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down Proof of Creativity provenance API")


# Create FastAPI application
app = FastAPI(
    title="Proof of Creativity Provenance API",
    description="Content provenance registration, platform binding and verification",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed Input"},
        409: {"model": ErrorResponse, "description": "Registry Conflict"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    }
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = [
    ((MalformedInput, UnrecognizedFormat, UnknownNetwork, ManifestError), status.HTTP_400_BAD_REQUEST),
    ((NotOwner, SigningDeclined), status.HTTP_403_FORBIDDEN),
    ((NotRegistered, BlobNotFound), status.HTTP_404_NOT_FOUND),
    ((RegistryConflict,), status.HTTP_409_CONFLICT),
]


def status_for(exc: ProvenanceError) -> int:
    for classes, code in ERROR_STATUS:
        if isinstance(exc, classes):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def parse_json_field(raw: Optional[str], field: str, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except ValueError as e:
        raise MalformedInput(f"{field} is not valid JSON: {e}", field=field)


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded file, enforcing MAX_FILE_SIZE."""
    data = await file.read()
    if len(data) > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {config.MAX_FILE_SIZE} bytes"
        )
    return data


@app.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Proof of Creativity Provenance API",
        "version": __version__,
        "description": "Content provenance registration, platform binding and verification",
        "docs_url": "/docs",
        "health_url": "/health",
        "default_network": config.DEFAULT_NETWORK,
        "platforms": supported_platforms(),
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint with registry and blob store status."""
    registry_health = registry.health_check() if registry is not None else {"error": "not_initialized"}
    storage_health = blob_store.health_check() if blob_store is not None else {"error": "not_initialized"}

    components = {
        "registry": "healthy" if registry_health.get("available") else "unhealthy",
        "storage": "healthy" if storage_health.get("available") else "unhealthy",
    }
    overall_status = "healthy" if all(s == "healthy" for s in components.values()) else "degraded"

    return HealthResponse(
        status=overall_status,
        version=__version__,
        components={
            **components,
            "registry_health": registry_health,
            "storage_health": storage_health,
            "signer_identity": signer.identity if signer is not None else None,
            "cached_lookups": len(lookup_cache) if lookup_cache is not None else 0,
        }
    )


@app.get("/networks", response_model=List[config.NetworkConfig])
async def list_networks():
    """Configured ledger networks."""
    return list(config.NETWORKS.values())


@app.post("/register", response_model=RegistrationResult)
async def register_content(
    file: UploadFile = File(..., description="Content to register"),
    network: str = Form(config.DEFAULT_NETWORK),
    metadata: Optional[str] = Form(None, description="JSON object of manifest metadata"),
    bindings: Optional[str] = Form(None, description='JSON list of {"platform", "locator"}'),
    upload_content: bool = Form(False, description="Store the raw bytes alongside the manifest"),
):
    """
    Register content under the server's signing identity.

    The manifest is signed and persisted before the registry entry is
    written. Optional bindings are attempted afterwards, each reported
    individually.
    """
    data = await read_upload(file)
    metadata_doc = parse_json_field(metadata, "metadata", {})
    if not isinstance(metadata_doc, dict):
        raise MalformedInput("metadata must be a JSON object", field="metadata")
    binding_docs = parse_json_field(bindings, "bindings", [])
    if not isinstance(binding_docs, list):
        raise MalformedInput("bindings must be a JSON list", field="bindings")
    try:
        items = [(b["platform"], b["locator"]) for b in binding_docs]
    except (KeyError, TypeError):
        raise MalformedInput("each binding needs platform and locator", field="bindings")

    logger.info("Processing registration", filename=file.filename, size=len(data),
                network=network, bindings=len(items))
    return await registration_service.register_and_bind(
        data, signer, network, bindings=items, metadata=metadata_doc,
        upload_content=upload_content,
    )


@app.post("/bind", response_model=BindResult)
async def bind_locator(request: BindRequest):
    """Bind a platform locator to content registered by the server identity."""
    return await binding_service.bind(
        request.fingerprint, request.platform, request.locator, signer.identity, request.network
    )


@app.post("/bind-many", response_model=List[BindOutcome])
async def bind_many_locators(request: BindManyRequest):
    """Bind several locators; each item reports its own outcome."""
    return await binding_service.bind_many(
        request.fingerprint, [(i.platform, i.locator) for i in request.items],
        signer.identity, request.network,
    )


@app.delete("/bind", response_model=Receipt)
async def unbind_locator(request: BindRequest):
    """Remove a platform binding."""
    return await binding_service.unbind(
        request.fingerprint, request.platform, request.locator, signer.identity, request.network
    )


@app.get("/bindings", response_model=List[Binding])
async def list_bindings(
    fingerprint: str = Query(..., description="0x-prefixed SHA-256 fingerprint"),
    network: str = Query(config.DEFAULT_NETWORK),
):
    """Platform locators bound to registered content."""
    return await binding_service.list_bindings(fingerprint, network)


@app.post("/verify", response_model=VerificationResult)
async def verify_content(
    file: UploadFile = File(..., description="Content to verify"),
    network: str = Form(config.DEFAULT_NETWORK),
):
    """Verify content by fingerprinting the uploaded bytes."""
    data = await read_upload(file)
    return await verification_engine.verify_file(data, network)


@app.get("/verify/fingerprint", response_model=VerificationResult)
async def verify_fingerprint(
    fingerprint: str = Query(..., description="0x-prefixed SHA-256 fingerprint"),
    network: str = Query(config.DEFAULT_NETWORK),
):
    """Verify a claim by fingerprint."""
    return await verification_engine.verify_fingerprint(fingerprint, network)


@app.get("/verify/platform", response_model=VerificationResult)
async def verify_platform(
    reference: Optional[str] = Query(None, description="platform:identifier or a URL"),
    platform: Optional[str] = Query(None),
    locator: Optional[str] = Query(None),
    network: str = Query(config.DEFAULT_NETWORK),
):
    """Verify by platform locator, given as a reference or as platform + locator."""
    if platform and locator:
        return await verification_engine.verify_platform(platform, network, raw_locator=locator)
    if not reference:
        raise MalformedInput("Provide reference, or platform and locator")
    return await verification_engine.verify_platform(reference, network)


@app.get("/verify/manifest", response_model=VerificationResult)
async def verify_manifest(
    locator: str = Query(..., description="Manifest blob locator"),
    network: str = Query(config.DEFAULT_NETWORK),
):
    """Verify starting from a manifest locator."""
    return await verification_engine.verify_manifest(locator, network)


@app.get("/proof/manifest", response_model=Proof)
async def manifest_proof(
    locator: str = Query(..., description="Manifest blob locator"),
    network: str = Query(config.DEFAULT_NETWORK),
):
    """Portable proof document for a manifest."""
    return await verification_engine.prove_manifest(locator, network)


@app.exception_handler(ProvenanceError)
async def provenance_exception_handler(request: Request, exc: ProvenanceError):
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log("Request failed", url=str(request.url), method=request.method,
        error=exc.code, message=exc.message)
    return JSONResponse(status_code=status_code,
                        content=json.loads(json.dumps(exc.to_dict(), default=str)))


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception",
                 url=str(request.url), method=request.method, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_server_error", "message": "An unexpected error occurred"}
    )


if __name__ == "__main__":
    uvicorn.run(
        "provenance.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", 8000)),
        reload=os.getenv("DEBUG", "false").lower() == "true",
        log_config=None,  # We handle logging with structlog
    )
