"""Perceptual image hashing: aHash, dHash, DCT pHash and colour histograms.

All hash functions take a decoded image as a numpy array in RGB channel
order (``H x W x 3``; a fourth alpha channel is ignored, a 2-D array is
treated as already grayscale) and return the hash as a lowercase hex
string, 4 bits per digit, most-significant bit first.
"""

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import cv2
import numpy as np

from .configs import HashingConfig
from .errors import HashLengthMismatchError

# ITU-R BT.601 luma weights, R/G/B order
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)

_DEFAULT_HASHING = HashingConfig()


def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """Read an image file into an RGB array.

    Args:
        image_path: Path to an image file OpenCV can decode

    Returns:
        ``H x W x 3`` uint8 array in RGB order

    Raises:
        FileNotFoundError: If the file does not exist
        OSError: If the file exists but cannot be decoded
    """
    path = Path(image_path)
    if not path.is_file():
        raise FileNotFoundError(f"Frame image not found: {path}")

    image_bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image_bgr is None:
        raise OSError(f"Failed to decode frame image: {path}")

    return cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB)


def _resize(image: np.ndarray, width: int, height: int) -> np.ndarray:
    if image.ndim == 3 and image.shape[2] == 4:
        image = image[:, :, :3]
    if image.dtype not in (np.uint8, np.float32, np.float64):
        image = image.astype(np.float32)
    return cv2.resize(np.ascontiguousarray(image), (width, height), interpolation=cv2.INTER_AREA)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert an RGB image to float64 luminance (0.299R + 0.587G + 0.114B)."""
    if image.ndim == 2:
        return image.astype(np.float64)
    return image[:, :, :3].astype(np.float64) @ LUMA_WEIGHTS


def dct_matrix(size: int) -> np.ndarray:
    """Build the ``size x size`` type-II DCT basis matrix.

    Row ``u`` holds ``sqrt(2/N) * c(u) * cos((2x + 1) * u * pi / 2N)`` with
    ``c(0) = 1/sqrt(2)`` and ``c(u) = 1`` otherwise, so the matrix is
    orthonormal.
    """
    x = np.arange(size, dtype=np.float64)
    u = x.reshape(-1, 1)
    basis = np.cos((2 * x + 1) * u * np.pi / (2 * size))
    scale = np.full((size, 1), np.sqrt(2.0 / size))
    scale[0, 0] = np.sqrt(1.0 / size)
    return basis * scale


def dct2d(block: np.ndarray) -> np.ndarray:
    """Apply a 2-D type-II DCT to a square block.

    Computed as ``C @ X @ C.T``; element ``[v, u]`` of the result is the
    coefficient for vertical frequency ``v`` and horizontal frequency ``u``.
    """
    block = np.asarray(block, dtype=np.float64)
    if block.ndim != 2 or block.shape[0] != block.shape[1]:
        raise ValueError(f"DCT input must be a square 2-D block, got shape {block.shape}")
    c = dct_matrix(block.shape[0])
    return c @ block @ c.T


def bits_to_hex(bits: Union[str, Iterable]) -> str:
    """Pack a bit sequence into hex, 4 bits per digit, MSB first.

    Args:
        bits: ``"0101..."`` string or any iterable/array of truthy values

    Raises:
        ValueError: If the bit count is not a multiple of 4
    """
    if isinstance(bits, str):
        flat = [c == "1" for c in bits]
    else:
        if not isinstance(bits, np.ndarray):
            bits = list(bits)
        flat = [bool(b) for b in np.asarray(bits).ravel()]

    if len(flat) % 4:
        raise ValueError(f"Bit count must be a multiple of 4, got {len(flat)}")

    digits = []
    for i in range(0, len(flat), 4):
        nibble = 0
        for bit in flat[i:i + 4]:
            nibble = (nibble << 1) | int(bit)
        digits.append(format(nibble, "x"))
    return "".join(digits)


def hex_to_bits(hex_hash: str) -> str:
    """Expand a hex hash into its ``"0"``/``"1"`` bit string."""
    return "".join(format(int(c, 16), "04b") for c in hex_hash)


def average_hash(image: np.ndarray, config: Optional[HashingConfig] = None) -> str:
    """Compute the average hash (aHash) of an image.

    Steps:
    1) resize to hash_size x hash_size
    2) convert to luminance
    3) bit = 1 where pixel >= mean
    """
    size = (config or _DEFAULT_HASHING).hash_size
    gray = to_grayscale(_resize(image, size, size))
    return bits_to_hex(gray >= gray.mean())


def difference_hash(image: np.ndarray, config: Optional[HashingConfig] = None) -> str:
    """Compute the difference hash (dHash) of an image.

    Resizes to (hash_size + 1) wide by hash_size high and sets a bit where
    a pixel is darker than its right-hand neighbour, row-major.
    """
    size = (config or _DEFAULT_HASHING).hash_size
    gray = to_grayscale(_resize(image, size + 1, size))
    return bits_to_hex(gray[:, :-1] < gray[:, 1:])


def perceptual_hash(image: np.ndarray, config: Optional[HashingConfig] = None) -> str:
    """Compute the DCT-based perceptual hash (pHash) of an image.

    The image is reduced to phash_size x phash_size luminance and
    transformed with :func:`dct2d`. The top-left hash_size x hash_size
    coefficients are thresholded against the median of that block with the
    DC term left out; the DC bit itself is always 0.
    """
    cfg = config or _DEFAULT_HASHING
    gray = to_grayscale(_resize(image, cfg.phash_size, cfg.phash_size))
    low = dct2d(gray)[:cfg.hash_size, :cfg.hash_size].ravel()

    ac = np.sort(low[1:])
    median = ac[len(ac) // 2]

    bits = low > median
    bits[0] = False
    return bits_to_hex(bits)


def color_histogram(image: np.ndarray, config: Optional[HashingConfig] = None) -> List[float]:
    """Compute a normalized per-channel colour histogram.

    Layout is ``[R bins..., G bins..., B bins...]``; each channel's bins
    sum to 1.0.
    """
    cfg = config or _DEFAULT_HASHING
    small = _resize(image, cfg.histogram_size, cfg.histogram_size)
    if small.ndim == 2:
        small = np.stack([small, small, small], axis=-1)
    pixels = np.clip(small, 0, 255).astype(np.uint16).reshape(-1, 3)

    total = pixels.shape[0]
    bins = cfg.histogram_bins
    channels = []
    for ch in range(3):
        idx = pixels[:, ch] * bins // 256
        channels.append(np.bincount(idx, minlength=bins)[:bins] / total)
    return np.concatenate(channels).astype(float).tolist()


def hamming_distance(hash1: str, hash2: str) -> int:
    """Count differing bits between two hex hashes.

    Raises:
        HashLengthMismatchError: If the hashes have different lengths
    """
    if len(hash1) != len(hash2):
        raise HashLengthMismatchError(len(hash1), len(hash2))

    distance = 0
    for c1, c2 in zip(hash1, hash2):
        distance += bin(int(c1, 16) ^ int(c2, 16)).count('1')
    return distance


def hash_similarity(hash1: str, hash2: str) -> float:
    """Similarity in [0, 1]: one minus the fraction of differing bits."""
    distance = hamming_distance(hash1, hash2)
    max_bits = len(hash1) * 4
    if max_bits == 0:
        return 1.0
    return 1.0 - distance / max_bits


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either is all zero."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector lengths must match ({va.size} vs {vb.size})")

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))
