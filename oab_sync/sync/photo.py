"""
Photo loading and processing.

Directory contacts can be given one configured photo (a company logo, for
instance). The photo is read from a local file or downloaded over HTTP,
then converted to a JPEG that fits the People API limits.
"""

import io
import logging
import time
from pathlib import Path

import requests
from PIL import Image, UnidentifiedImageError
from requests.exceptions import RequestException

from oab_sync import __version__

# Retry configuration
MAX_RETRIES = 5
INITIAL_RETRY_DELAY = 1.0  # seconds
MAX_RETRY_DELAY = 60.0  # seconds

DOWNLOAD_TIMEOUT = 30.0  # seconds

# Photo processing configuration
MAX_PHOTO_SIZE = 5 * 1024 * 1024  # People API limit
MAX_PHOTO_DIMENSION = 2048  # pixels
MIN_JPEG_QUALITY = 20
JPEG_QUALITY = 85

logger = logging.getLogger(__name__)


class PhotoError(Exception):
    """Raised when a photo operation fails."""

    pass


class PhotoDownloadError(PhotoError):
    """Raised when photo download fails after retries."""

    pass


def download_photo(
    url: str, max_retries: int = MAX_RETRIES, timeout: float = DOWNLOAD_TIMEOUT
) -> bytes:
    """
    Download a photo from a URL with retry logic.

    Server errors, timeouts and connection errors are retried with
    exponential backoff; client errors fail immediately.

    Args:
        url: URL of the photo to download
        max_retries: Maximum number of attempts
        timeout: Request timeout in seconds

    Returns:
        Photo data as bytes

    Raises:
        PhotoDownloadError: If download fails after all retries
        PhotoError: For an invalid URL or an empty response
    """
    if not url.startswith(("http://", "https://")):
        raise PhotoError(f"Invalid photo URL scheme: {url}")

    delay = INITIAL_RETRY_DELAY

    for attempt in range(max_retries):
        last_attempt = attempt == max_retries - 1
        try:
            logger.debug(
                f"Downloading photo from {url} (attempt {attempt + 1}/{max_retries})"
            )
            response = requests.get(
                url, timeout=timeout, headers={"User-Agent": f"oab-sync/{__version__}"}
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code and status_code >= 500 and not last_attempt:
                logger.warning(
                    f"Server error ({status_code}) downloading photo, "
                    f"retrying in {delay:.1f}s"
                )
                time.sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY)
                continue
            raise PhotoDownloadError(f"Failed to download photo: {e}") from e
        except RequestException as e:
            if not last_attempt:
                logger.warning(f"Error downloading photo, retrying in {delay:.1f}s: {e}")
                time.sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY)
                continue
            raise PhotoDownloadError(
                f"Photo download failed after {max_retries} attempts: {e}"
            ) from e

        if not response.content:
            raise PhotoError(f"Empty response from {url}")

        content_type = response.headers.get("content-type", "").lower()
        if content_type and not content_type.startswith("image/"):
            logger.warning(f"Unexpected content type for photo: {content_type}")

        logger.debug(f"Downloaded photo: {len(response.content)} bytes")
        return response.content

    raise PhotoDownloadError(f"Failed to download photo after {max_retries} retries")


def process_photo(
    photo_data: bytes,
    max_size: int = MAX_PHOTO_SIZE,
    max_dimension: int = MAX_PHOTO_DIMENSION,
) -> bytes:
    """
    Convert photo data to a JPEG within size and dimension limits.

    Args:
        photo_data: Raw photo data as bytes
        max_size: Maximum file size in bytes
        max_dimension: Maximum width/height in pixels

    Returns:
        Processed photo data as JPEG bytes

    Raises:
        PhotoError: If the data is not an image or cannot be made small enough
    """
    if not photo_data:
        raise PhotoError("Photo data cannot be empty")

    try:
        image = Image.open(io.BytesIO(photo_data))
        image.load()
    except UnidentifiedImageError as e:
        raise PhotoError("Invalid or unsupported image format") from e
    except OSError as e:
        raise PhotoError(f"Failed to read photo: {e}") from e

    if image.mode == "RGBA":
        # Flatten transparency onto white
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[3])
        image = background
    elif image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    if max(image.size) > max_dimension:
        original_size = image.size
        image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        logger.debug(f"Resized photo from {original_size} to {image.size}")

    quality = JPEG_QUALITY
    while True:
        output = io.BytesIO()
        image.save(output, format="JPEG", quality=quality, optimize=True)
        output_data = output.getvalue()
        if len(output_data) <= max_size:
            break
        if quality - 5 < MIN_JPEG_QUALITY:
            raise PhotoError(
                f"Unable to reduce photo size below {max_size} bytes "
                f"(current: {len(output_data)} bytes)"
            )
        quality -= 5

    logger.debug(f"Processed photo: {len(photo_data)} -> {len(output_data)} bytes")
    return output_data


def load_photo(
    source: str,
    base_dir: Path | None = None,
    max_dimension: int = MAX_PHOTO_DIMENSION,
) -> bytes:
    """
    Load the configured photo from a URL or a file and process it.

    Args:
        source: http(s) URL or file path (relative paths use base_dir)
        base_dir: Directory for relative file paths
        max_dimension: Maximum width/height in pixels

    Returns:
        JPEG bytes ready for upload

    Raises:
        PhotoError: If the photo cannot be read or processed
    """
    if source.startswith(("http://", "https://")):
        data = download_photo(source)
    else:
        path = Path(source).expanduser()
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PhotoError(f"Failed to read photo file {path}: {e}") from e

    return process_photo(data, max_dimension=max_dimension)
