"""I/O helpers: resolving image identifiers and persisting results."""
from __future__ import annotations

import base64
import binascii
import io
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import unquote_to_bytes

import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ImageLoadError
from .models import PixelBuffer
from .utils_image import from_pil

LOGGER = logging.getLogger("bse_pipeline.io")

DEFAULT_TIMEOUT = 15.0

_LOCK_REGISTRY: dict[Path, threading.Lock] = {}
_LOCK_USERS: dict[Path, int] = {}
_LOCK_REGISTRY_GUARD = threading.Lock()


def ensure_dir(path: Path) -> Path:
    """Ensure that *path* exists and return it."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def decode_data_uri(identifier: str) -> bytes:
    """Return the payload bytes of a ``data:`` URI."""

    header, sep, payload = identifier.partition(",")
    if not sep:
        raise ImageLoadError("Malformed data URI: missing ',' separator")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ImageLoadError(f"Invalid base64 payload in data URI: {exc}") from exc
    return unquote_to_bytes(payload)


class ImageLoader:
    """Resolve embedded-data, remote URL and local path identifiers into RGBA buffers."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.timeout = timeout
        self.session = session
        self.base_dir = Path(base_dir) if base_dir is not None else None

    def load(self, identifier: str) -> PixelBuffer:
        if not identifier:
            raise ImageLoadError("Empty image identifier")
        payload = self._read_bytes(identifier)
        buffer = self._decode(payload)
        LOGGER.debug("Loaded %s (%dx%d)", _describe(identifier), buffer.width, buffer.height)
        return buffer

    def _read_bytes(self, identifier: str) -> bytes:
        if identifier.startswith("data:"):
            return decode_data_uri(identifier)
        if identifier.startswith(("http://", "https://")):
            return self._fetch(identifier)
        return self._read_local(identifier)

    def _fetch(self, url: str) -> bytes:
        getter = self.session.get if self.session is not None else requests.get
        try:
            response = getter(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ImageLoadError(f"Failed to fetch {url}: {exc}") from exc
        return response.content

    def _read_local(self, identifier: str) -> bytes:
        path = Path(identifier[len("file://"):] if identifier.startswith("file://") else identifier)
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ImageLoadError(f"Cannot read image file {path}: {exc}") from exc

    @staticmethod
    def _decode(payload: bytes) -> PixelBuffer:
        try:
            with Image.open(io.BytesIO(payload)) as image:
                image.load()
                oriented = ImageOps.exif_transpose(image)
                return from_pil(oriented)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise ImageLoadError(f"Cannot decode image data: {exc}") from exc


def _describe(identifier: str) -> str:
    if identifier.startswith("data:"):
        return identifier.split(",", 1)[0] + ",..."
    return identifier


def _acquire_file_lock(target: Path) -> threading.Lock:
    with _LOCK_REGISTRY_GUARD:
        lock = _LOCK_REGISTRY.get(target)
        if lock is None:
            lock = threading.Lock()
            _LOCK_REGISTRY[target] = lock
        _LOCK_USERS[target] = _LOCK_USERS.get(target, 0) + 1
    lock.acquire()
    return lock


def _release_file_lock(target: Path, lock: threading.Lock) -> None:
    lock.release()
    with _LOCK_REGISTRY_GUARD:
        remaining = _LOCK_USERS[target] - 1
        if remaining:
            _LOCK_USERS[target] = remaining
        else:
            del _LOCK_USERS[target]
            del _LOCK_REGISTRY[target]


@contextmanager
def file_lock(path: Path) -> Iterator[None]:
    """Serialize writers of *path* within this process."""

    target = path.resolve()
    lock = _acquire_file_lock(target)
    try:
        yield
    finally:
        _release_file_lock(target, lock)


def atomic_write_bytes(path: Path | str, payload: bytes) -> Path:
    """Write *payload* to *path* through a temporary file and ``os.replace``."""

    destination = Path(path)
    ensure_dir(destination.parent)
    temp_path = destination.with_name(f".{destination.name}.tmp")
    with file_lock(destination):
        temp_path.write_bytes(payload)
        os.replace(temp_path, destination)
    return destination


__all__ = ["ImageLoader", "atomic_write_bytes", "decode_data_uri", "ensure_dir", "file_lock"]
