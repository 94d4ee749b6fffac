"""Error types raised by the fingerprinting and integrity engine.

All of these indicate bad input or programmer error. None are transient,
so nothing in this package retries on them.
"""


class FrameproofError(Exception):
    """Base class for all engine errors."""


class NoFramesError(FrameproofError):
    """Fingerprinting was asked to run on an empty frame list."""

    def __init__(self, video_id: str = ""):
        self.video_id = video_id
        suffix = f" for video {video_id}" if video_id else ""
        super().__init__(f"No frames supplied{suffix}; at least one frame is required")


class EmptyTreeError(FrameproofError):
    """A Merkle tree was requested over zero leaves."""

    def __init__(self):
        super().__init__("Cannot build Merkle tree with no leaves")


class FrameOutOfRangeError(FrameproofError, IndexError):
    """A proof was requested for a frame number outside the tree."""

    def __init__(self, frame_number: object, total_frames: int):
        self.frame_number = frame_number
        self.total_frames = total_frames
        super().__init__(
            f"Frame number {frame_number} out of range (0-{total_frames - 1})"
        )


class HashLengthMismatchError(FrameproofError, ValueError):
    """Two hex hashes of different bit lengths were compared."""

    def __init__(self, len_a: int, len_b: int):
        self.len_a = len_a
        self.len_b = len_b
        super().__init__(f"Hash lengths must match (got {len_a * 4} and {len_b * 4} bits)")


class MalformedSerializedTreeError(FrameproofError, ValueError):
    """A stored tree could not be decoded."""
