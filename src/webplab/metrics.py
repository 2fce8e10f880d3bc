"""Quality metrics comparing a candidate frame against the source frame.

Four independent, pure metrics over equally sized RGBA pixel grids:

* SSIM on 8x8 luminance blocks (higher is better, 0-1)
* PSNR over R, G, B (higher is better, dB, ``inf`` for identical grids)
* deltaE, a sampled colour difference in CIE L*a*b* (lower is better)
* edge preservation, agreement of Sobel gradient maps (higher is better, 0-1)

The deltaE here is the Euclidean CIE76 distance (deltaE*ab), a simplified
stand-in for CIEDE2000.  Acceptance thresholds downstream are expressed in
this simplified unit, so switching formulas changes what they mean.
"""

import io
import logging
import math
from dataclasses import dataclass
from typing import Any

import cv2
import numpy as np
from PIL import Image
from skimage.color import rgb2lab

from .config import DEFAULT_METRICS_CONFIG, MetricsConfig
from .error_handling import DimensionMismatchError, MetricsError

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights
_LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


@dataclass(frozen=True)
class PixelGrid:
    """A decoded RGBA image, ``rgba`` shaped (height, width, 4), uint8."""

    width: int
    height: int
    rgba: np.ndarray

    def __post_init__(self) -> None:
        if self.rgba.shape != (self.height, self.width, 4):
            raise ValueError(
                f"RGBA array shape {self.rgba.shape} does not match "
                f"{self.width}x{self.height}"
            )

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelGrid":
        """Build a grid from an HxW, HxWx3 or HxWx4 uint8 array."""
        arr = np.asarray(array, dtype=np.uint8)
        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr], axis=-1)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported pixel array shape: {arr.shape}")
        if arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=-1)
        height, width = arr.shape[:2]
        return cls(width=width, height=height, rgba=np.ascontiguousarray(arr))

    @property
    def rgb(self) -> np.ndarray:
        return self.rgba[..., :3]


@dataclass(frozen=True)
class QualityMetrics:
    """Similarity of one candidate to the reference frame."""

    ssim: float
    psnr: float
    delta_e: float
    edge_preservation: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "ssim": self.ssim,
            "psnr": self.psnr,
            "delta_e": self.delta_e,
            "edge_preservation": self.edge_preservation,
        }


def decode_pixels(buffer: bytes) -> PixelGrid:
    """Decode the first frame of an encoded image into an RGBA grid.

    Raises:
        MetricsError: If the buffer cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(buffer)) as img:
            img.seek(0)
            return PixelGrid.from_array(np.array(img.convert("RGBA")))
    except Exception as e:
        raise MetricsError("Failed to decode image buffer", cause=e) from e


def _check_dimensions(img1: PixelGrid, img2: PixelGrid) -> None:
    if img1.width != img2.width or img1.height != img2.height:
        raise DimensionMismatchError(
            f"Image dimensions must match: {img1.width}x{img1.height} "
            f"vs {img2.width}x{img2.height}"
        )


def _luminance(img: PixelGrid) -> np.ndarray:
    return img.rgb.astype(np.float64) @ _LUMA_WEIGHTS


def calculate_ssim(
    img1: PixelGrid, img2: PixelGrid, config: MetricsConfig | None = None
) -> float:
    """Block-wise Structural Similarity over luminance (0-1, higher is better).

    The image is tiled into non-overlapping ``SSIM_BLOCK_SIZE`` squares;
    incomplete blocks along the right and bottom edges are dropped.  An
    image too small to hold a single block is treated as one window.
    """
    _check_dimensions(img1, img2)
    config = config or DEFAULT_METRICS_CONFIG
    c1, c2 = config.SSIM_C1, config.SSIM_C2
    block = config.SSIM_BLOCK_SIZE

    lum1 = _luminance(img1)
    lum2 = _luminance(img2)

    rows, cols = img1.height // block, img1.width // block
    if rows == 0 or cols == 0:
        blocks1 = lum1.reshape(1, -1)
        blocks2 = lum2.reshape(1, -1)
    else:
        cropped1 = lum1[: rows * block, : cols * block]
        cropped2 = lum2[: rows * block, : cols * block]
        blocks1 = (
            cropped1.reshape(rows, block, cols, block).transpose(0, 2, 1, 3).reshape(rows * cols, -1)
        )
        blocks2 = (
            cropped2.reshape(rows, block, cols, block).transpose(0, 2, 1, 3).reshape(rows * cols, -1)
        )

    if blocks1.size == 0:
        return 1.0

    mu1 = blocks1.mean(axis=1)
    mu2 = blocks2.mean(axis=1)
    d1 = blocks1 - mu1[:, None]
    d2 = blocks2 - mu2[:, None]
    sigma1_sq = (d1 * d1).mean(axis=1)
    sigma2_sq = (d2 * d2).mean(axis=1)
    sigma12 = (d1 * d2).mean(axis=1)

    ssim_map = ((2 * mu1 * mu2 + c1) * (2 * sigma12 + c2)) / (
        (mu1 * mu1 + mu2 * mu2 + c1) * (sigma1_sq + sigma2_sq + c2)
    )
    return float(np.clip(ssim_map.mean(), 0.0, 1.0))


def calculate_psnr(img1: PixelGrid, img2: PixelGrid) -> float:
    """Peak Signal-to-Noise Ratio over R, G, B in dB.

    Returns ``math.inf`` for bit-identical colour channels.
    """
    _check_dimensions(img1, img2)
    diff = img1.rgb.astype(np.float64) - img2.rgb.astype(np.float64)
    mse = float(np.mean(diff * diff))
    if mse == 0.0:
        return math.inf
    return 20.0 * math.log10(255.0 / math.sqrt(mse))


def calculate_delta_e(
    img1: PixelGrid, img2: PixelGrid, config: MetricsConfig | None = None
) -> float:
    """Mean sampled colour difference in CIE L*a*b* (deltaE*ab, lower is better).

    Every ``DELTA_E_SAMPLING_STRIDE``-th pixel in row-major order is
    converted sRGB -> linear RGB -> XYZ (D65) -> L*a*b* and the Euclidean
    distances are averaged.
    """
    _check_dimensions(img1, img2)
    config = config or DEFAULT_METRICS_CONFIG
    stride = config.DELTA_E_SAMPLING_STRIDE

    samples1 = img1.rgb.reshape(-1, 3)[::stride]
    samples2 = img2.rgb.reshape(-1, 3)[::stride]
    if len(samples1) == 0:
        return 0.0

    lab1 = rgb2lab(samples1[np.newaxis].astype(np.float64) / 255.0)[0]
    lab2 = rgb2lab(samples2[np.newaxis].astype(np.float64) / 255.0)[0]
    distances = np.sqrt(np.sum((lab1 - lab2) ** 2, axis=1))
    return float(distances.mean())


def sobel_magnitude(img: PixelGrid) -> np.ndarray:
    """Normalised Sobel gradient magnitude of luminance.

    Border pixels are left at zero; only pixels with a full 3x3
    neighbourhood get a gradient.
    """
    lum = _luminance(img)
    magnitude = np.zeros_like(lum)
    if img.height < 3 or img.width < 3:
        return magnitude

    gx = cv2.Sobel(lum, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(lum, cv2.CV_64F, 0, 1, ksize=3)
    magnitude[1:-1, 1:-1] = np.sqrt(gx**2 + gy**2)[1:-1, 1:-1] / 255.0
    return magnitude


def calculate_edge_preservation(
    img1: PixelGrid, img2: PixelGrid, config: MetricsConfig | None = None
) -> float:
    """Fraction of edge pixels whose gradient strength survived (0-1).

    A pixel is an edge when either image's normalised gradient exceeds
    ``EDGE_THRESHOLD``; it is preserved when the two magnitudes differ by
    less than ``EDGE_MATCH_TOLERANCE``.  Edge-free images score 1.0.
    """
    _check_dimensions(img1, img2)
    config = config or DEFAULT_METRICS_CONFIG

    edges1 = sobel_magnitude(img1)
    edges2 = sobel_magnitude(img2)

    edge_mask = (edges1 > config.EDGE_THRESHOLD) | (edges2 > config.EDGE_THRESHOLD)
    total_edges = int(edge_mask.sum())
    if total_edges == 0:
        return 1.0

    matching = np.abs(edges1 - edges2)[edge_mask] < config.EDGE_MATCH_TOLERANCE
    return float(matching.sum() / total_edges)


def calculate_all_metrics(
    reference: PixelGrid, candidate: PixelGrid, config: MetricsConfig | None = None
) -> QualityMetrics:
    """Compute all four metrics for one candidate.

    Raises:
        DimensionMismatchError: If the grids differ in size
    """
    return QualityMetrics(
        ssim=calculate_ssim(reference, candidate, config),
        psnr=calculate_psnr(reference, candidate),
        delta_e=calculate_delta_e(reference, candidate, config),
        edge_preservation=calculate_edge_preservation(reference, candidate, config),
    )


def compare_buffers(
    reference: bytes, candidate: bytes, config: MetricsConfig | None = None
) -> QualityMetrics:
    """Decode two encoded images and compare their first frames."""
    return calculate_all_metrics(decode_pixels(reference), decode_pixels(candidate), config)
