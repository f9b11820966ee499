import uuid
import structlog
from datetime import datetime, timezone
from typing import Optional

logger = structlog.get_logger()


def new_tx_id() -> str:
    """Generate a new unique ledger transaction ID."""
    return "0x" + uuid.uuid4().hex


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a moment as ISO-8601 UTC with second precision, e.g. 2025-01-02T03:04:05Z."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable format."""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(size_bytes)
    while size >= 1024 and i < len(size_names) - 1:
        size /= 1024.0
        i += 1

    return f"{size:.1f} {size_names[i]}"
