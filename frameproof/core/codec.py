"""Compact storage encoding for Merkle trees.

The keyed form is the archive format for stored proofs and must stay
stable::

    {"r": root, "d": depth, "f": frames, "i": interval_ms, "t": duration_ms,
     "a": algorithm, "n": [{"l", "x", "h", "fn", "ft", "lc", "rc"}, ...]}

Optional node keys are omitted when unset.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, StrictFloat, StrictInt, StrictStr, ValidationError, model_validator

from .errors import MalformedSerializedTreeError
from .merkle import MerkleNode, MerkleTree


class _SerializedNode(BaseModel):
    l: StrictInt
    x: StrictInt
    h: StrictStr
    fn: Optional[StrictInt] = None
    ft: Optional[Union[StrictInt, StrictFloat]] = None
    lc: Optional[StrictInt] = None
    rc: Optional[StrictInt] = None


class _SerializedTree(BaseModel):
    r: StrictStr
    d: StrictInt
    f: StrictInt
    i: Union[StrictInt, StrictFloat]
    t: Union[StrictInt, StrictFloat]
    a: StrictStr
    n: List[_SerializedNode]

    @model_validator(mode="after")
    def validate_leaf_count(self) -> "_SerializedTree":
        leaves = sum(1 for node in self.n if node.l == 0)
        if leaves != self.f:
            raise ValueError(f"Tree declares {self.f} frames but has {leaves} leaf nodes")
        return self


def _encode(tree: MerkleTree) -> _SerializedTree:
    return _SerializedTree(
        r=tree.root_hash,
        d=tree.depth,
        f=tree.total_frames,
        i=tree.frame_interval_ms,
        t=tree.duration_ms,
        a=tree.hash_algorithm,
        n=[
            _SerializedNode(
                l=node.level,
                x=node.index,
                h=node.hash,
                fn=node.frame_number,
                ft=node.frame_timestamp_ms,
                lc=node.left_child_index,
                rc=node.right_child_index,
            )
            for node in tree.nodes
        ],
    )


def _decode(parsed: _SerializedTree) -> MerkleTree:
    return MerkleTree(
        root_hash=parsed.r,
        depth=parsed.d,
        total_frames=parsed.f,
        frame_interval_ms=parsed.i,
        duration_ms=parsed.t,
        hash_algorithm=parsed.a,
        nodes=tuple(
            MerkleNode(
                level=n.l,
                index=n.x,
                hash=n.h,
                frame_number=n.fn,
                frame_timestamp_ms=n.ft,
                left_child_index=n.lc,
                right_child_index=n.rc,
            )
            for n in parsed.n
        ),
    )


def serialize_tree(tree: MerkleTree) -> str:
    """Encode a tree as compact keyed JSON for storage."""
    return _encode(tree).model_dump_json(exclude_none=True)


def deserialize_tree(data: Union[str, bytes]) -> MerkleTree:
    """Decode a tree produced by :func:`serialize_tree`.

    Raises:
        MalformedSerializedTreeError: If the data is not valid JSON or does
            not have the stored tree shape
    """
    if not isinstance(data, (str, bytes, bytearray)):
        raise MalformedSerializedTreeError(
            f"Serialized tree must be str or bytes, got {type(data).__name__}"
        )
    try:
        parsed = _SerializedTree.model_validate_json(data)
    except ValidationError as e:
        raise MalformedSerializedTreeError(f"Malformed serialized tree: {e}") from e
    return _decode(parsed)


def tree_to_dict(tree: MerkleTree) -> Dict[str, Any]:
    """Keyed storage form as a plain dict (same keys as the JSON)."""
    return _encode(tree).model_dump(exclude_none=True)


def tree_from_dict(data: Dict[str, Any]) -> MerkleTree:
    """Inverse of :func:`tree_to_dict`.

    Raises:
        MalformedSerializedTreeError: If the dict does not have the stored tree shape
    """
    try:
        parsed = _SerializedTree.model_validate(data)
    except ValidationError as e:
        raise MalformedSerializedTreeError(f"Malformed serialized tree: {e}") from e
    return _decode(parsed)
