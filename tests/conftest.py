import io
import shutil
from collections.abc import Callable
from typing import Any

import numpy as np
import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from webplab.error_handling import EngineError
from webplab.external_engines.codec import CodecService

# ---------------------------------------------------------------------------
# GIF builders
# ---------------------------------------------------------------------------


def gif_bytes(frames: list[Image.Image], duration: int = 100, **save_kwargs: Any) -> bytes:
    """Encode *frames* as an animated GIF in memory."""
    buf = io.BytesIO()
    frames[0].save(
        buf,
        format="GIF",
        save_all=True,
        append_images=frames[1:],
        duration=duration,
        loop=0,
        **save_kwargs,
    )
    return buf.getvalue()


def png_bytes(image: Image.Image, pad: int = 0) -> bytes:
    """Encode *image* as PNG, optionally padded with a text chunk of *pad* bytes."""
    buf = io.BytesIO()
    info = None
    if pad:
        info = PngInfo()
        info.add_text("pad", "x" * pad)
    image.save(buf, format="PNG", pnginfo=info)
    return buf.getvalue()


def solid_frame(value: int, size: int = 32, marker: int = 0) -> Image.Image:
    """Solid gray frame with one contrasting pixel at (marker, marker).

    The marker keeps consecutive frames byte-distinct so the GIF writer does
    not merge them, without moving the frame's perceptual hash.
    """
    arr = np.full((size, size, 3), value, dtype=np.uint8)
    arr[marker, marker] = 255 - value
    return Image.fromarray(arr, "RGB")


def gradient_frame(size: int = 32) -> Image.Image:
    x = np.linspace(0, 255, size, dtype=np.uint8)
    arr = np.zeros((size, size, 3), dtype=np.uint8)
    arr[..., 0] = x[None, :]
    arr[..., 1] = x[:, None]
    arr[..., 2] = 128
    return Image.fromarray(arr, "RGB")


@pytest.fixture
def static_gif() -> bytes:
    """Single-frame 32x32 gradient GIF."""
    return gif_bytes([gradient_frame()])


@pytest.fixture
def animated_gif() -> bytes:
    """Six frames: black, black, white, white, white, black (near-duplicates)."""
    values = [0, 0, 255, 255, 255, 0]
    return gif_bytes([solid_frame(v, marker=i) for i, v in enumerate(values)])


@pytest.fixture
def long_gif() -> bytes:
    """Twenty-four frames alternating black/white every frame."""
    return gif_bytes([solid_frame(0 if i % 2 == 0 else 255, marker=i) for i in range(24)])


@pytest.fixture
def alpha_gif() -> bytes:
    """Two-frame palette GIF whose index 0 is transparent."""
    frames = []
    for i in range(2):
        img = Image.new("P", (16, 16), 0)
        img.putpalette([0, 0, 0, 255, 0, 0, 0, 0, 255] + [0, 0, 0] * 253)
        img.paste(1 + i, (4, 4, 12, 12))
        frames.append(img)
    return gif_bytes(frames, transparency=0, disposal=2)


@pytest.fixture
def gif_file(tmp_path, animated_gif):
    path = tmp_path / "sample.gif"
    path.write_bytes(animated_gif)
    return path


# ---------------------------------------------------------------------------
# In-memory codec
# ---------------------------------------------------------------------------


def _frames_of(buffer: bytes) -> list[Image.Image]:
    frames = []
    with Image.open(io.BytesIO(buffer)) as img:
        for i in range(getattr(img, "n_frames", 1)):
            img.seek(i)
            rgba = img.convert("RGBA")
            if np.asarray(rgba)[..., 3].min() == 255:
                frames.append(rgba.convert("RGB"))
            else:
                frames.append(rgba)
    return frames


def first_frame_png(args: list[str], frames: list[Image.Image]) -> bytes:
    return png_bytes(frames[0])


def quality_padded_png(args: list[str], frames: list[Image.Image]) -> bytes:
    """Identical pixels, file size growing with the ``-q:v`` value."""
    quality = int(args[args.index("-q:v") + 1])
    return png_bytes(frames[0], pad=quality * 200)


def inverted_png(args: list[str], frames: list[Image.Image]) -> bytes:
    arr = 255 - np.asarray(frames[0].convert("RGB"))
    return png_bytes(Image.fromarray(arr.astype(np.uint8), "RGB"))


def resized_png(args: list[str], frames: list[Image.Image]) -> bytes:
    w, h = frames[0].size
    return png_bytes(frames[0].resize((w * 2, h * 2)))


class FakeCodec(CodecService):
    """Codec service over a dict, rendering outputs with Pillow.

    ``render`` produces the bytes of the final (``.webp``) output of each
    call; snapshot outputs (``.png`` names and ``%04d`` patterns) are always
    lossless PNG frames of the input, converted to ``snapshot_mode`` when
    given (FFmpeg writes GIF snapshots as RGBA).  ``fail_when`` makes
    matching invocations raise :class:`EngineError`.
    """

    def __init__(
        self,
        render: Callable[[list[str], list[Image.Image]], bytes] = first_frame_png,
        fail_when: Callable[[list[str]], bool] | None = None,
        snapshot_mode: str | None = None,
    ) -> None:
        self.files: dict[str, bytes] = {}
        self.calls: list[list[str]] = []
        self.deleted: list[str] = []
        self.render = render
        self.fail_when = fail_when
        self.snapshot_mode = snapshot_mode

    def write_file(self, name: str, data: bytes) -> None:
        self.files[name] = data

    def read_file(self, name: str) -> bytes:
        try:
            return self.files[name]
        except KeyError:
            raise EngineError(f"Scratch file not found: {name}") from None

    def delete_file(self, name: str) -> None:
        self.deleted.append(name)
        self.files.pop(name, None)

    def exec(self, args: list[str]) -> dict[str, Any]:
        self.calls.append(list(args))
        if self.fail_when is not None and self.fail_when(args):
            raise EngineError("simulated codec failure")

        source = self.read_file(args[args.index("-i") + 1])
        frames = _frames_of(source)
        snapshots = frames
        if self.snapshot_mode is not None:
            snapshots = [frame.convert(self.snapshot_mode) for frame in frames]
        output = args[-1]

        if "%" in output:
            limit = len(frames)
            if "-frames:v" in args:
                limit = min(limit, int(args[args.index("-frames:v") + 1]))
            for i, frame in enumerate(snapshots[:limit], start=1):
                self.files[output % i] = png_bytes(frame)
        elif output.endswith(".png"):
            self.files[output] = png_bytes(snapshots[0])
        else:
            self.files[output] = self.render(args, frames)

        return {
            "render_ms": 0,
            "engine": "fake",
            "command": " ".join(args),
            "kilobytes": len(self.files.get(output, b"")) / 1024,
        }

    def encode_calls(self) -> list[list[str]]:
        return [c for c in self.calls if c[-1].endswith(".webp")]


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()


# ---------------------------------------------------------------------------
# External tools
# ---------------------------------------------------------------------------

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None, reason="ffmpeg not installed"
)
