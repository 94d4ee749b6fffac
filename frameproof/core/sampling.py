"""Frame sampling contract and scratch storage for frame extraction.

Decoding video is not done here. The extraction step supplies
``SampledFrame`` records; this module describes how densely it should
sample and gives it a scratch directory that is always cleaned up.
"""

import math
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from loguru import logger

from .configs import SamplingConfig

_DEFAULT_SAMPLING = SamplingConfig()


@dataclass(frozen=True)
class SampledFrame:
    """One extracted still image and where it sits in the video."""
    timestamp_ms: int
    image_path: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SampledFrame":
        """Build from the collaborator's ``{timestampMs, imagePath}`` shape."""
        return cls(timestamp_ms=int(data["timestampMs"]), image_path=str(data["imagePath"]))

    def to_dict(self) -> Dict[str, Any]:
        return {"timestampMs": self.timestamp_ms, "imagePath": self.image_path}


@dataclass(frozen=True)
class SamplingPlan:
    """Sampling interval and frame cap for one video."""
    interval_ms: int
    max_frames: int


def sampling_plan(duration_seconds: float, config: Optional[SamplingConfig] = None) -> SamplingPlan:
    """Pick the sampling interval and frame cap for a video duration.

    Args:
        duration_seconds: Video duration in seconds
        config: Sampling tiers (defaults: <=30s 1s/30, <=300s 2s/150,
            <=1800s 5s/360, longer 10s/500)

    Returns:
        The plan of the first tier whose bound covers the duration
    """
    if duration_seconds < 0:
        raise ValueError(f"Duration must be non-negative, got {duration_seconds}")

    for tier in (config or _DEFAULT_SAMPLING).tiers:
        if tier.max_duration_sec is None or duration_seconds <= tier.max_duration_sec:
            return SamplingPlan(interval_ms=tier.interval_ms, max_frames=tier.max_frames)

    # Unreachable: SamplingConfig guarantees an unbounded last tier
    raise ValueError("Sampling configuration has no tier for this duration")


def plan_timestamps(duration_seconds: float, config: Optional[SamplingConfig] = None) -> List[int]:
    """Timestamps (ms) the extraction step should sample for a video."""
    plan = sampling_plan(duration_seconds, config)
    frame_count = min(math.ceil(duration_seconds * 1000 / plan.interval_ms), plan.max_frames)
    return [i * plan.interval_ms for i in range(frame_count)]


@contextmanager
def scratch_directory(prefix: str = "frameproof_", root: Optional[Union[str, Path]] = None) -> Iterator[Path]:
    """Create a temporary directory and remove it on every exit path.

    Removal failures are logged and never raised, so they cannot mask the
    outcome of the wrapped block.

    Args:
        prefix: Directory name prefix
        root: Parent directory (system temp dir if None)

    Yields:
        Path to the new directory
    """
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    scratch = Path(tempfile.mkdtemp(prefix=prefix, dir=str(root) if root is not None else None))
    logger.debug(f"Created scratch directory: {scratch}")
    try:
        yield scratch
    finally:
        try:
            shutil.rmtree(scratch)
            logger.debug(f"Removed scratch directory: {scratch}")
        except OSError as e:
            logger.warning(f"Failed to remove scratch directory {scratch}: {e}")
