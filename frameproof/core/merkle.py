"""Frame-level Merkle trees: construction, inclusion proofs and comparison.

Leaves are per-frame SHA-256 hex digests in capture order. A parent is
``sha256(left_hex + right_hex)`` over the hex strings, not the raw bytes.
When a level has an odd node count the last node is paired with itself,
both when building and when generating proofs. That rule is known to admit
a trivial second preimage at the tail position, but stored roots depend on
it, so it must not change.
"""

import hashlib
import operator
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from loguru import logger

from .errors import EmptyTreeError, FrameOutOfRangeError, FrameproofError

HASH_ALGORITHM = "sha256"

ProofPosition = Literal["left", "right"]


@dataclass(frozen=True)
class MerkleNode:
    """A tree node. Level 0 nodes are frame leaves; higher levels are internal.

    ``left_child_index``/``right_child_index`` are positions within the
    level below; the odd tail node has both set to the same position.
    """
    level: int
    index: int
    hash: str
    frame_number: Optional[int] = None
    frame_timestamp_ms: Optional[int] = None
    left_child_index: Optional[int] = None
    right_child_index: Optional[int] = None

    @property
    def is_leaf(self) -> bool:
        return self.level == 0

    def to_dict(self) -> Dict[str, Any]:
        data = {"level": self.level, "index": self.index, "hash": self.hash}
        optional = {
            "frameNumber": self.frame_number,
            "frameTimestampMs": self.frame_timestamp_ms,
            "leftChildIndex": self.left_child_index,
            "rightChildIndex": self.right_child_index,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass(frozen=True)
class MerkleTree:
    """An immutable Merkle tree over a video's sampled frames."""
    root_hash: str
    depth: int
    total_frames: int
    frame_interval_ms: int
    duration_ms: int
    nodes: Tuple[MerkleNode, ...]
    hash_algorithm: str = HASH_ALGORITHM

    def level_nodes(self, level: int) -> List[MerkleNode]:
        """Nodes of one level, in left-to-right order."""
        return [n for n in self.nodes if n.level == level]

    def leaves(self) -> List[MerkleNode]:
        return self.level_nodes(0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rootHash": self.root_hash,
            "depth": self.depth,
            "totalFrames": self.total_frames,
            "frameIntervalMs": self.frame_interval_ms,
            "durationMs": self.duration_ms,
            "nodes": [n.to_dict() for n in self.nodes],
            "hashAlgorithm": self.hash_algorithm,
        }


@dataclass(frozen=True)
class ProofStep:
    """One sibling on the path from a leaf to the root.

    ``position`` is the side the sibling sits on relative to the running hash.
    """
    hash: str
    position: ProofPosition
    level: int

    def to_dict(self) -> Dict[str, Any]:
        return {"hash": self.hash, "position": self.position, "level": self.level}


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof for a single frame."""
    frame_number: int
    frame_hash: str
    frame_timestamp_ms: int
    proof: Tuple[ProofStep, ...]
    root_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frameNumber": self.frame_number,
            "frameHash": self.frame_hash,
            "frameTimestampMs": self.frame_timestamp_ms,
            "proof": [step.to_dict() for step in self.proof],
            "rootHash": self.root_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerkleProof":
        """Rebuild a proof from its ``to_dict`` shape.

        Raises:
            KeyError: If a required key is missing
        """
        return cls(
            frame_number=data["frameNumber"],
            frame_hash=data["frameHash"],
            frame_timestamp_ms=data.get("frameTimestampMs", 0),
            proof=tuple(
                ProofStep(hash=s["hash"], position=s["position"], level=s["level"])
                for s in data["proof"]
            ),
            root_hash=data["rootHash"],
        )


@dataclass
class TreeComparison:
    """Frame indices that differ between two trees, by position."""
    identical: bool
    modified_frames: List[int] = field(default_factory=list)
    added_frames: List[int] = field(default_factory=list)
    removed_frames: List[int] = field(default_factory=list)


def hash_pair(left: str, right: str) -> str:
    """Hash two child hex digests into their parent digest."""
    return hashlib.sha256((left + right).encode("utf-8")).hexdigest()


def build_tree(
    leaf_hashes: Sequence[str],
    frame_timestamps: Optional[Sequence[int]] = None,
    frame_interval_ms: int = 0,
    duration_ms: int = 0,
) -> MerkleTree:
    """Build a Merkle tree from per-frame leaf hashes.

    Args:
        leaf_hashes: One hex digest per sampled frame, in capture order
        frame_timestamps: Capture time of each frame in ms (0 for all if None)
        frame_interval_ms: Sampling interval, recorded on the tree
        duration_ms: Source video duration, recorded on the tree

    Returns:
        The built tree; depth and frame count are derived from the leaves

    Raises:
        EmptyTreeError: If there are no leaves
        ValueError: If timestamps are given but do not match the leaf count
    """
    if len(leaf_hashes) == 0:
        raise EmptyTreeError()

    if frame_timestamps is None:
        frame_timestamps = [0] * len(leaf_hashes)
    elif len(frame_timestamps) != len(leaf_hashes):
        raise ValueError(
            f"Got {len(frame_timestamps)} timestamps for {len(leaf_hashes)} leaf hashes"
        )

    nodes: List[MerkleNode] = []
    node_index = 0

    for i, (leaf_hash, ts) in enumerate(zip(leaf_hashes, frame_timestamps)):
        nodes.append(MerkleNode(
            level=0,
            index=node_index,
            hash=leaf_hash,
            frame_number=i,
            frame_timestamp_ms=ts,
        ))
        node_index += 1

    # Each level depends on the whole level below, so levels go in sequence
    current_level = list(leaf_hashes)
    level = 0
    while len(current_level) > 1:
        next_level: List[str] = []
        for i in range(0, len(current_level), 2):
            right_i = i + 1 if i + 1 < len(current_level) else i
            parent_hash = hash_pair(current_level[i], current_level[right_i])
            next_level.append(parent_hash)
            nodes.append(MerkleNode(
                level=level + 1,
                index=node_index,
                hash=parent_hash,
                left_child_index=i,
                right_child_index=right_i,
            ))
            node_index += 1
        current_level = next_level
        level += 1

    tree = MerkleTree(
        root_hash=current_level[0],
        depth=level,
        total_frames=len(leaf_hashes),
        frame_interval_ms=frame_interval_ms,
        duration_ms=duration_ms,
        nodes=tuple(nodes),
    )
    logger.debug(f"Built Merkle tree: {tree.total_frames} frames, depth {tree.depth}, root {tree.root_hash[:16]}")
    return tree


def generate_proof(tree: MerkleTree, frame_number: int) -> MerkleProof:
    """Generate an inclusion proof for one frame.

    Args:
        tree: Tree containing the frame
        frame_number: Zero-based frame position

    Returns:
        Proof whose steps run from the leaf's sibling up to the root's children

    Raises:
        FrameOutOfRangeError: If frame_number is not in [0, total_frames)
    """
    # Accepts numpy integers; rejects bools and floats.
    if isinstance(frame_number, bool):
        raise FrameOutOfRangeError(frame_number, tree.total_frames)
    try:
        index = operator.index(frame_number)
    except TypeError:
        raise FrameOutOfRangeError(frame_number, tree.total_frames) from None
    if not 0 <= index < tree.total_frames:
        raise FrameOutOfRangeError(frame_number, tree.total_frames)
    frame_number = index

    levels: Dict[int, List[MerkleNode]] = defaultdict(list)
    for node in tree.nodes:
        levels[node.level].append(node)

    leaf = next((n for n in levels[0] if n.frame_number == frame_number), None)
    if leaf is None:
        raise FrameproofError(f"Leaf node for frame {frame_number} not found")

    steps: List[ProofStep] = []
    current_index = frame_number
    for level in range(tree.depth):
        level_nodes = levels[level]
        is_left = current_index % 2 == 0
        sibling_index = current_index + 1 if is_left else current_index - 1

        # Odd tail pairs with itself, as at build time
        if sibling_index < len(level_nodes):
            sibling = level_nodes[sibling_index]
        else:
            sibling = level_nodes[current_index]

        steps.append(ProofStep(
            hash=sibling.hash,
            position="right" if is_left else "left",
            level=level,
        ))
        current_index //= 2

    return MerkleProof(
        frame_number=frame_number,
        frame_hash=leaf.hash,
        frame_timestamp_ms=leaf.frame_timestamp_ms or 0,
        proof=tuple(steps),
        root_hash=tree.root_hash,
    )


def verify_proof(proof: MerkleProof) -> bool:
    """Check that a proof folds back up to its claimed root.

    Safe on untrusted input: any malformed proof yields False instead of
    raising.
    """
    try:
        current_hash = proof.frame_hash
        if not isinstance(current_hash, str):
            return False

        for step in proof.proof:
            if not isinstance(step.hash, str):
                return False
            if step.position == "left":
                current_hash = hash_pair(step.hash, current_hash)
            elif step.position == "right":
                current_hash = hash_pair(current_hash, step.hash)
            else:
                return False

        return current_hash == proof.root_hash
    except (AttributeError, TypeError, ValueError):
        return False


def compare_trees(tree_a: MerkleTree, tree_b: MerkleTree) -> TreeComparison:
    """Report which frame positions differ between two trees.

    Trees with equal roots are reported identical without looking at
    leaves. Otherwise leaves are compared by frame index, not by content
    alignment: a frame inserted near the start shifts every later index
    and shows up as a run of modified frames.
    """
    if tree_a.root_hash == tree_b.root_hash:
        return TreeComparison(identical=True)

    leaves_a = tree_a.leaves()
    leaves_b = tree_b.leaves()
    result = TreeComparison(identical=False)

    for i in range(max(len(leaves_a), len(leaves_b))):
        in_a = i < len(leaves_a)
        in_b = i < len(leaves_b)
        if in_a and in_b:
            if leaves_a[i].hash != leaves_b[i].hash:
                result.modified_frames.append(i)
        elif in_a:
            result.removed_frames.append(i)
        else:
            result.added_frames.append(i)

    logger.debug(
        f"Tree comparison: {len(result.modified_frames)} modified, "
        f"{len(result.added_frames)} added, {len(result.removed_frames)} removed"
    )
    return result
