"""Tests for resolving image identifiers into RGBA buffers."""
from __future__ import annotations

import base64
import io
from pathlib import Path

import numpy as np
import pytest
import requests
from PIL import Image

from bse_pipeline.core import utils_io
from bse_pipeline.core.errors import ImageLoadError
from bse_pipeline.core.utils_io import ImageLoader, atomic_write_bytes, decode_data_uri


def _png_bytes(image: Image.Image) -> bytes:
    stream = io.BytesIO()
    image.save(stream, format="PNG")
    return stream.getvalue()


def _data_uri(image: Image.Image) -> str:
    return "data:image/png;base64," + base64.b64encode(_png_bytes(image)).decode("ascii")


class _FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_grayscale_data_uri_is_up_converted() -> None:
    gray = Image.new("L", (5, 3), 77)
    buffer = ImageLoader().load(_data_uri(gray))
    assert (buffer.width, buffer.height) == (5, 3)
    assert buffer.data.shape == (3, 5, 4)
    np.testing.assert_array_equal(buffer.rgb, np.full((3, 5, 3), 77, dtype=np.uint8))
    assert buffer.is_opaque()


def test_rgba_alpha_is_preserved() -> None:
    image = Image.new("RGBA", (4, 4), (10, 20, 30, 0))
    image.putpixel((1, 2), (200, 100, 50, 128))
    buffer = ImageLoader().load(_data_uri(image))
    assert buffer.alpha[2, 1] == 128
    assert buffer.alpha[0, 0] == 0
    assert tuple(buffer.rgb[2, 1]) == (200, 100, 50)


def test_local_jpeg_path(tmp_path: Path) -> None:
    path = tmp_path / "photo.jpg"
    Image.new("RGB", (16, 8), (200, 30, 30)).save(path, format="JPEG", quality=95)
    buffer = ImageLoader().load(str(path))
    assert (buffer.width, buffer.height) == (16, 8)
    assert buffer.is_opaque()
    assert abs(int(buffer.rgb[4, 8, 0]) - 200) <= 3


def test_relative_path_and_file_scheme(tmp_path: Path) -> None:
    Image.new("RGB", (2, 2), (1, 2, 3)).save(tmp_path / "bg.png")
    loader = ImageLoader(base_dir=tmp_path)
    assert loader.load("bg.png").size == (2, 2)
    assert ImageLoader().load(f"file://{tmp_path / 'bg.png'}").size == (2, 2)


def test_remote_url_uses_requests(monkeypatch) -> None:
    payload = _png_bytes(Image.new("RGB", (3, 3), (0, 255, 0)))
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return _FakeResponse(payload)

    monkeypatch.setattr(utils_io.requests, "get", fake_get)
    buffer = ImageLoader(timeout=2.5).load("https://example.com/bg.png")
    assert calls == [("https://example.com/bg.png", 2.5)]
    assert tuple(buffer.rgb[1, 1]) == (0, 255, 0)


def test_remote_http_error_is_io_error(monkeypatch) -> None:
    monkeypatch.setattr(utils_io.requests, "get", lambda url, timeout: _FakeResponse(b"", status_code=404))
    with pytest.raises(ImageLoadError) as excinfo:
        ImageLoader().load("http://example.com/missing.png")
    assert isinstance(excinfo.value, OSError)
    assert excinfo.value.code == "IO_ERROR"


def test_remote_connection_error(monkeypatch) -> None:
    def fail(url, timeout):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(utils_io.requests, "get", fail)
    with pytest.raises(ImageLoadError):
        ImageLoader().load("http://example.invalid/bg.png")


def test_session_is_preferred_over_module_get() -> None:
    payload = _png_bytes(Image.new("RGB", (1, 1), (9, 9, 9)))

    class _Session:
        def get(self, url, timeout):
            return _FakeResponse(payload)

    buffer = ImageLoader(session=_Session()).load("https://cdn.example.com/x.png")  # type: ignore[arg-type]
    assert tuple(buffer.rgb[0, 0]) == (9, 9, 9)


@pytest.mark.parametrize(
    "identifier",
    [
        "",
        "data:image/png;base64,bm90IGFuIGltYWdl",
        "data:image/png;base64",
        "/definitely/not/here.png",
    ],
)
def test_unusable_identifiers_raise(identifier: str) -> None:
    with pytest.raises(ImageLoadError):
        ImageLoader().load(identifier)


def test_percent_encoded_data_uri() -> None:
    assert decode_data_uri("data:text/plain,a%20b") == b"a b"


def test_atomic_write_bytes(tmp_path: Path) -> None:
    target = atomic_write_bytes(tmp_path / "nested" / "out.bin", b"payload")
    assert target.read_bytes() == b"payload"
    assert not list(target.parent.glob(".*.tmp"))


def test_decompression_bomb_is_io_error(monkeypatch) -> None:
    identifier = _data_uri(Image.new("RGB", (8, 8), (1, 2, 3)))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
    with pytest.raises(ImageLoadError):
        ImageLoader().load(identifier)


def test_lock_registry_is_emptied_after_writes(tmp_path: Path) -> None:
    for index in range(5):
        atomic_write_bytes(tmp_path / f"out_{index}.bin", b"x")
    with utils_io.file_lock(tmp_path / "held.bin"):
        assert (tmp_path / "held.bin").resolve() in utils_io._LOCK_REGISTRY
    assert not any(path.parent == tmp_path.resolve() for path in utils_io._LOCK_REGISTRY)
    assert not any(path.parent == tmp_path.resolve() for path in utils_io._LOCK_USERS)
