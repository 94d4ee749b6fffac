"""Fingerprinting of sampled video frames.

Turns the frames supplied by the extraction step into a perceptual
fingerprint (for duplicate detection) and a SHA-256 Merkle tree (for
frame-level integrity proofs). Frames are independent, so the async
variants hash them concurrently in worker threads; any single failure
fails the whole run and cancels the remaining work.
"""

import asyncio
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger

from .configs import FingerprintConfig
from .errors import NoFramesError
from .hashing import average_hash, color_histogram, difference_hash, load_image, perceptual_hash
from .loggingx import log_duration
from .merkle import MerkleTree, build_tree
from .sampling import SampledFrame, sampling_plan

_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class FrameHash:
    """Perceptual hashes of one sampled frame."""
    timestamp: int
    phash: str
    dhash: str

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "phash": self.phash, "dhash": self.dhash}


@dataclass(frozen=True)
class PerceptualHashData:
    """Perceptual fingerprint of a video.

    ``phash``/``dhash``/``ahash`` and ``color_histogram`` describe the
    representative (median-index) frame; ``frame_hashes`` covers every
    sampled frame.
    """
    phash: str
    dhash: str
    ahash: str
    frame_hashes: Tuple[FrameHash, ...]
    color_histogram: Tuple[float, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phash": self.phash,
            "dhash": self.dhash,
            "ahash": self.ahash,
            "frameHashes": [fh.to_dict() for fh in self.frame_hashes],
            "colorHistogram": list(self.color_histogram),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerceptualHashData":
        return cls(
            phash=data["phash"],
            dhash=data["dhash"],
            ahash=data["ahash"],
            frame_hashes=tuple(
                FrameHash(timestamp=fh["timestamp"], phash=fh["phash"], dhash=fh.get("dhash", ""))
                for fh in data.get("frameHashes", [])
            ),
            color_histogram=tuple(data.get("colorHistogram", [])),
        )


@dataclass(frozen=True)
class _FrameResult:
    frame_hash: FrameHash
    ahash: Optional[str] = None
    histogram: Optional[List[float]] = None


def hash_frame_file(image_path: Union[str, Path]) -> str:
    """SHA-256 hex digest of a frame file's bytes (the Merkle leaf hash)."""
    digest = hashlib.sha256()
    with open(image_path, 'rb') as f:
        for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


async def _gather_or_cancel(aws: Sequence[Awaitable[Any]]) -> List[Any]:
    """Await all in order; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class PerceptualFingerprintEngine:
    """Computes perceptual fingerprints and frame Merkle trees.

    Holds configuration only; every call is independent.
    """

    def __init__(self, config: Optional[FingerprintConfig] = None) -> None:
        self.config = config or FingerprintConfig()

    def _hash_frame(self, frame: SampledFrame, representative: bool = False) -> _FrameResult:
        hashing = self.config.hashing
        image = load_image(frame.image_path)
        frame_hash = FrameHash(
            timestamp=frame.timestamp_ms,
            phash=perceptual_hash(image, hashing),
            dhash=difference_hash(image, hashing),
        )
        logger.debug(f"Hashed frame @{frame.timestamp_ms}ms: phash={frame_hash.phash}")

        if not representative:
            return _FrameResult(frame_hash=frame_hash)
        return _FrameResult(
            frame_hash=frame_hash,
            ahash=average_hash(image, hashing),
            histogram=color_histogram(image, hashing),
        )

    async def _run_all(self, calls) -> List[Any]:
        """Run ``(func, *args)`` calls in worker threads, bounded and timed out."""
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        timeout = self.config.frame_timeout_sec

        # A timed-out frame frees its slot while its thread runs on, so live
        # threads can briefly exceed max_concurrency.
        async def run(func, *args):
            async with semaphore:
                return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)

        return await _gather_or_cancel([run(*call) for call in calls])

    @staticmethod
    def _assemble(video_id: str, results: Sequence[_FrameResult], rep_index: int) -> PerceptualHashData:
        rep = results[rep_index]
        data = PerceptualHashData(
            phash=rep.frame_hash.phash,
            dhash=rep.frame_hash.dhash,
            ahash=rep.ahash or "",
            frame_hashes=tuple(r.frame_hash for r in results),
            color_histogram=tuple(rep.histogram or ()),
        )
        logger.info(f"[{video_id}] Fingerprinted {len(results)} frames, phash={data.phash}")
        return data

    def fingerprint(self, frames: Sequence[SampledFrame], video_id: str) -> PerceptualHashData:
        """Fingerprint a video from its sampled frames.

        Args:
            frames: Sampled frames in capture order (at least one)
            video_id: Identifier used for logging

        Returns:
            Perceptual fingerprint of the video

        Raises:
            NoFramesError: If no frames were supplied
            OSError: If a frame image cannot be read
        """
        frames = list(frames)
        if not frames:
            raise NoFramesError(video_id)

        rep_index = len(frames) // 2
        with log_duration(f"fingerprint {video_id}"):
            results = [self._hash_frame(f, i == rep_index) for i, f in enumerate(frames)]
        return self._assemble(video_id, results, rep_index)

    async def fingerprint_async(self, frames: Sequence[SampledFrame], video_id: str) -> PerceptualHashData:
        """Concurrent variant of :meth:`fingerprint`.

        Each frame is hashed in a worker thread with a per-frame timeout;
        the first failure (including ``TimeoutError``) cancels the rest and
        propagates.
        """
        frames = list(frames)
        if not frames:
            raise NoFramesError(video_id)

        rep_index = len(frames) // 2
        with log_duration(f"fingerprint {video_id}"):
            results = await self._run_all(
                (self._hash_frame, f, i == rep_index) for i, f in enumerate(frames)
            )
        return self._assemble(video_id, results, rep_index)

    def build_frame_tree(self, frames: Sequence[SampledFrame], duration_seconds: float) -> MerkleTree:
        """Build the integrity tree over the SHA-256 digests of frame files.

        Raises:
            NoFramesError: If no frames were supplied
            OSError: If a frame file cannot be read
        """
        frames = list(frames)
        if not frames:
            raise NoFramesError()

        with log_duration("hash frame files"):
            leaf_hashes = [hash_frame_file(f.image_path) for f in frames]
        return self._tree_from_leaves(frames, leaf_hashes, duration_seconds)

    async def build_frame_tree_async(self, frames: Sequence[SampledFrame], duration_seconds: float) -> MerkleTree:
        """Concurrent variant of :meth:`build_frame_tree`."""
        frames = list(frames)
        if not frames:
            raise NoFramesError()

        with log_duration("hash frame files"):
            leaf_hashes = await self._run_all((hash_frame_file, f.image_path) for f in frames)
        return self._tree_from_leaves(frames, leaf_hashes, duration_seconds)

    def _tree_from_leaves(
        self, frames: Sequence[SampledFrame], leaf_hashes: Sequence[str], duration_seconds: float
    ) -> MerkleTree:
        plan = sampling_plan(duration_seconds, self.config.sampling)
        tree = build_tree(
            leaf_hashes,
            [f.timestamp_ms for f in frames],
            frame_interval_ms=plan.interval_ms,
            duration_ms=round(duration_seconds * 1000),
        )
        logger.info(f"Merkle tree complete. Root: {tree.root_hash}, Depth: {tree.depth}, Frames: {tree.total_frames}")
        return tree
