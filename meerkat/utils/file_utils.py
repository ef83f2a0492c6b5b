"""
File utilities for meerkat
"""
import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


# File type detection
IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.tiff', '.tif',
    '.webp', '.heic', '.heif',
}

VIDEO_EXTENSIONS = {
    '.mp4', '.mov', '.avi', '.mkv', '.webm', '.m4v', '.mpg', '.mpeg',
    '.3gp', '.mts', '.m2ts', '.h264',
}

# Bot API limits for sendPhoto
MAX_PHOTO_SIZE = 10 * 1024 * 1024
MAX_PHOTO_DIMENSIONS_SUM = 10000


def get_file_type(file_path: Union[str, Path]) -> str:
    """
    Determine file type from extension

    Args:
        file_path: Path to file

    Returns:
        File type: 'image', 'video' or 'other'
    """
    ext = Path(file_path).suffix.lower()

    if ext in IMAGE_EXTENSIONS:
        return 'image'
    elif ext in VIDEO_EXTENSIONS:
        return 'video'
    return 'other'


def get_file_size(file_path: Union[str, Path]) -> int:
    """File size in bytes, 0 if the file cannot be read"""
    try:
        return os.path.getsize(file_path)
    except OSError as e:
        logger.error(f"Error getting file size for {file_path}: {e}")
        return 0


def get_image_dimensions(file_path: Union[str, Path]) -> Optional[Tuple[int, int]]:
    """
    Get image dimensions without decoding pixel data

    Returns:
        (width, height) or None if the file is not a readable image
    """
    try:
        with Image.open(file_path) as img:
            return img.size
    except (OSError, UnidentifiedImageError) as e:
        logger.debug(f"Cannot read image dimensions of {file_path}: {e}")
        return None


def fits_photo_limits(file_path: Union[str, Path]) -> bool:
    """Whether the Bot API will accept the file through sendPhoto"""
    size = get_file_size(file_path)
    if size == 0 or size > MAX_PHOTO_SIZE:
        return False

    dimensions = get_image_dimensions(file_path)
    if dimensions is None:
        return False
    return sum(dimensions) <= MAX_PHOTO_DIMENSIONS_SUM


async def wait_for_file_stable(file_path: Union[str, Path],
                               max_wait: float = 10.0,
                               check_interval: float = 0.5,
                               required_stable: int = 2) -> bool:
    """
    Wait for file to stabilize (stop changing size)

    Args:
        file_path: Path to file
        max_wait: Maximum wait time in seconds
        check_interval: Interval between checks
        required_stable: consecutive unchanged, non-empty size checks needed

    Returns:
        True if file stabilized, False if it vanished or timed out
    """
    if required_stable <= 0:
        return os.path.exists(file_path)

    start_time = time.monotonic()
    last_size = -1
    stable_count = 0

    while (time.monotonic() - start_time) < max_wait:
        try:
            current_size = os.stat(file_path).st_size
        except OSError:
            # File disappeared or inaccessible
            return False

        if current_size == last_size and current_size > 0:
            stable_count += 1
            if stable_count >= required_stable:
                return True
        else:
            stable_count = 0
            last_size = current_size

        await asyncio.sleep(check_interval)

    logger.warning(f"File {file_path} did not stabilize within {max_wait} seconds")
    return False
