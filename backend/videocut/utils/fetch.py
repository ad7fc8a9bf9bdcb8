"""Resolve pipeline inputs that may live behind an http(s) URL."""
import logging
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

import httpx

from videocut.config import settings
from videocut.utils.resources import ResourcePurpose, ResourceScope

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A remote input could not be downloaded, or a local one is missing."""
    pass


def is_remote(location: str) -> bool:
    """Check if a location is an http(s) URL."""
    return urlparse(str(location)).scheme in ("http", "https")


def guess_extension(location: str, default: str) -> str:
    """File extension from a URL or path, without the dot."""
    suffix = PurePosixPath(urlparse(str(location)).path).suffix
    return suffix.lstrip(".").lower() or default


async def fetch_to_path(url: str, destination: Path, timeout: Optional[float] = None) -> Path:
    """
    Stream a URL into a file.

    The body is written chunk by chunk. A partial file left by a failed
    transfer belongs to the caller's resource scope.

    Args:
        url: http(s) URL
        destination: File to write
        timeout: Request timeout in seconds

    Returns:
        The destination path

    Raises:
        FetchError: On transport errors or a non-2xx response
    """
    timeout = timeout or settings.fetch_timeout_seconds
    destination = Path(destination)
    written = 0
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                if not 200 <= response.status_code < 300:
                    raise FetchError(f"Failed to fetch {url}: HTTP {response.status_code}")
                with open(destination, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                        written += len(chunk)
    except httpx.TimeoutException as exc:
        logger.warning(f"Fetching {url} timed out")
        raise FetchError(f"Timed out fetching {url}") from exc
    except httpx.RequestError as exc:
        logger.warning(f"Fetching {url} failed: {type(exc).__name__}")
        raise FetchError(f"Failed to fetch {url}: {exc}") from exc

    logger.debug(f"Fetched {url} -> {destination} ({written} bytes)")
    return destination


async def resolve_input(
    location: str | Path,
    scope: ResourceScope,
    purpose: ResourcePurpose,
    default_extension: str = "mp4",
) -> Path:
    """
    Return a local path for an input.

    Remote inputs are downloaded into a temp resource owned by ``scope``;
    local paths are used in place.
    """
    location = str(location)
    if is_remote(location):
        resource = scope.allocate(purpose, guess_extension(location, default_extension))
        return await fetch_to_path(location, resource.path)

    path = Path(location)
    if not path.exists():
        raise FetchError(f"Input file not found: {path}")
    return path
