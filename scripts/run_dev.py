#!/usr/bin/env python3
"""
Development server runner for the provenance API
Includes auto-reload, console logging, and environment checking
"""

import os
import sys
import uvicorn
from pathlib import Path

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

os.environ.setdefault("LOG_FORMAT", "console")


def check_environment():
    """Check backend selection and the variables each backend needs."""
    registry_backend = os.getenv("REGISTRY_BACKEND", "memory")
    blob_backend = os.getenv("BLOB_BACKEND", "local")

    required_vars = []
    if registry_backend == "postgres":
        required_vars.append("REGISTRY_DB_DSN")
    if blob_backend == "gcs":
        required_vars.append("GCS_BUCKET_NAME")
    if blob_backend == "walrus":
        required_vars.append("WALRUS_ENDPOINT")

    optional_vars = [
        "API_HOST",
        "API_PORT",
        "DEBUG",
        "DEFAULT_NETWORK",
        "LOCAL_BLOB_DIR",
        "SIGNER_KEY_PATH",
        "CACHE_TTL_SECONDS",
    ]

    missing_vars = [var for var in required_vars if not os.getenv(var)]
    if missing_vars:
        print(f"❌ Missing required environment variables: {', '.join(missing_vars)}")
        print("Please check your .env file or environment configuration.")
        return False

    print(f"✅ Registry backend: {registry_backend}")
    print(f"✅ Blob backend: {blob_backend}")

    print("\n📋 Optional configurations:")
    for var in optional_vars:
        print(f"  {var}: {os.getenv(var, 'Not set')}")
    if not os.getenv("SIGNER_KEY_PATH"):
        print("⚠️  SIGNER_KEY_PATH not set: an ephemeral signing key will be generated")

    return True


def check_registry():
    """Make sure the configured ledger is reachable before serving."""
    from provenance.core.database import create_registry

    health = create_registry().health_check()
    if not health.get("available"):
        print(f"❌ Registry unavailable: {health.get('error')}")
        return False
    print(f"✅ Registry reachable ({health['backend']})")
    return True


def main():
    """Main entry point for development server."""
    print("🧾 Proof of Creativity Provenance - Development Server")
    print("=" * 50)

    if not check_environment():
        sys.exit(1)

    if not check_registry():
        sys.exit(1)

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "true").lower() == "true"

    print(f"\n🚀 Starting development server...")
    print(f"   Host: {host}")
    print(f"   Port: {port}")
    print(f"   Debug: {debug}")
    print(f"   Docs: http://{host}:{port}/docs")
    print("\n⏹️  Press Ctrl+C to stop the server")
    print("=" * 50)

    try:
        uvicorn.run(
            "provenance.main:app",
            host=host,
            port=port,
            reload=debug,
            log_level="debug" if debug else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")


if __name__ == "__main__":
    main()
