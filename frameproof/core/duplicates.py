"""Near-duplicate detection against a caller-supplied corpus.

Every corpus entry is checked by exact content digest first, then by pHash
and dHash Hamming distance. The best surviving match drives an
allow/warn/block recommendation using :class:`DuplicateThresholds`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from loguru import logger

from .configs import DuplicateThresholds, SimilarityWeights
from .fingerprint import PerceptualHashData
from .hashing import cosine_similarity, hamming_distance, hash_similarity


class HashType(str, Enum):
    """Which signal produced a match."""

    SHA256 = "sha256"
    PHASH = "phash"
    DHASH = "dhash"


class Recommendation(str, Enum):
    """Policy outcome for a submission."""

    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


@dataclass(frozen=True)
class CorpusEntry:
    """A previously fingerprinted video the caller wants checked against."""
    verification_id: str
    video_id: str
    sha256_hash: str
    phash: str
    dhash: Optional[str] = None
    creator_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CorpusEntry":
        """Build from the camelCase corpus record shape."""
        return cls(
            verification_id=data["verificationId"],
            video_id=data["videoId"],
            sha256_hash=data["sha256Hash"],
            phash=data["phash"],
            dhash=data.get("dhash"),
            creator_name=data.get("creatorName"),
        )


@dataclass(frozen=True)
class DuplicateMatch:
    verification_id: str
    video_id: str
    hash_type: HashType
    similarity: float
    distance: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "verificationId": self.verification_id,
            "videoId": self.video_id,
            "hashType": self.hash_type.value,
            "similarity": self.similarity,
        }
        if self.distance is not None:
            data["distance"] = self.distance
        return data


@dataclass(frozen=True)
class DuplicateCheckResult:
    is_duplicate: bool
    confidence: float
    recommendation: Recommendation
    matches: List[DuplicateMatch] = field(default_factory=list)
    original_verification_id: Optional[str] = None
    original_video_id: Optional[str] = None
    original_creator_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "isDuplicate": self.is_duplicate,
            "confidence": self.confidence,
            "matches": [m.to_dict() for m in self.matches],
            "recommendation": self.recommendation.value,
        }
        optional = {
            "originalVerificationId": self.original_verification_id,
            "originalVideoId": self.original_video_id,
            "originalCreatorName": self.original_creator_name,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass(frozen=True)
class VideoComparison:
    """Composite similarity between two fingerprints."""
    similarity: float
    is_same_video: bool
    phash_distance: int
    dhash_distance: int
    ahash_distance: int
    histogram_similarity: float


class DuplicateDetector:
    """Applies the duplicate policy to fingerprints.

    Attributes:
        thresholds: Hamming-distance bounds for match/warn/block
        weights: Weights of the composite score used by compare_videos
    """

    def __init__(
        self,
        thresholds: Optional[DuplicateThresholds] = None,
        weights: Optional[SimilarityWeights] = None,
    ):
        self.thresholds = thresholds or DuplicateThresholds()
        self.weights = weights or SimilarityWeights()

    def _perceptual_match(
        self, entry: CorpusEntry, hash_type: HashType, ours: str, theirs: str
    ) -> Optional[DuplicateMatch]:
        distance = hamming_distance(ours, theirs)
        if distance > self.thresholds.low_similarity:
            return None
        return DuplicateMatch(
            verification_id=entry.verification_id,
            video_id=entry.video_id,
            hash_type=hash_type,
            similarity=hash_similarity(ours, theirs),
            distance=distance,
        )

    def _recommend(self, best: DuplicateMatch) -> Recommendation:
        if best.hash_type is HashType.SHA256:
            return Recommendation.BLOCK
        if best.distance is not None:
            if best.distance <= self.thresholds.block:
                return Recommendation.BLOCK
            if best.distance <= self.thresholds.warn:
                return Recommendation.WARN
        return Recommendation.ALLOW

    def check(
        self,
        fingerprint: PerceptualHashData,
        sha256_hash: str,
        corpus: Iterable[Union[CorpusEntry, Dict[str, Any]]],
    ) -> DuplicateCheckResult:
        """Check a new fingerprint against previously fingerprinted videos.

        Args:
            fingerprint: Perceptual hashes of the new video
            sha256_hash: Exact content digest of the new video file
            corpus: Candidate entries (``CorpusEntry`` or camelCase dicts)

        Returns:
            Ranked matches and the policy recommendation

        Raises:
            HashLengthMismatchError: If a corpus hash has a different bit length
        """
        entries = [e if isinstance(e, CorpusEntry) else CorpusEntry.from_dict(e) for e in corpus]
        matches: List[DuplicateMatch] = []

        for entry in entries:
            if entry.sha256_hash == sha256_hash:
                matches.append(DuplicateMatch(
                    verification_id=entry.verification_id,
                    video_id=entry.video_id,
                    hash_type=HashType.SHA256,
                    similarity=1.0,
                    distance=0,
                ))
                continue

            match = self._perceptual_match(entry, HashType.PHASH, fingerprint.phash, entry.phash)
            if match:
                matches.append(match)

            if entry.dhash and fingerprint.dhash:
                match = self._perceptual_match(entry, HashType.DHASH, fingerprint.dhash, entry.dhash)
                if match:
                    matches.append(match)

        # Keep the best match per verification; earlier wins ties
        best_by_id: Dict[str, DuplicateMatch] = {}
        for match in matches:
            current = best_by_id.get(match.verification_id)
            if current is None or match.similarity > current.similarity:
                best_by_id[match.verification_id] = match

        # Exact digest matches rank ahead of perceptual matches of equal similarity
        ranked = sorted(
            best_by_id.values(),
            key=lambda m: (m.similarity, m.hash_type is HashType.SHA256),
            reverse=True,
        )

        if not ranked:
            logger.debug(f"No duplicates among {len(entries)} corpus entries")
            return DuplicateCheckResult(
                is_duplicate=False,
                confidence=0.0,
                recommendation=Recommendation.ALLOW,
                matches=[],
            )

        best = ranked[0]
        recommendation = self._recommend(best)
        original = next(e for e in entries if e.verification_id == best.verification_id)

        result = DuplicateCheckResult(
            is_duplicate=recommendation is not Recommendation.ALLOW,
            confidence=best.similarity,
            recommendation=recommendation,
            matches=ranked,
            original_verification_id=best.verification_id,
            original_video_id=best.video_id,
            original_creator_name=original.creator_name,
        )

        logger.info(
            f"Duplicate check: {len(ranked)} match(es), best {best.hash_type.value} "
            f"similarity {best.similarity:.3f} -> {recommendation.value}"
        )
        return result

    def compare_videos(self, a: PerceptualHashData, b: PerceptualHashData) -> VideoComparison:
        """Score how alike two fingerprinted videos are.

        Raises:
            HashLengthMismatchError: If corresponding hashes differ in length
        """
        phash_distance = hamming_distance(a.phash, b.phash)
        dhash_distance = hamming_distance(a.dhash, b.dhash)
        ahash_distance = hamming_distance(a.ahash, b.ahash)
        histogram_similarity = cosine_similarity(a.color_histogram, b.color_histogram)

        w = self.weights
        similarity = (
            hash_similarity(a.phash, b.phash) * w.phash
            + hash_similarity(a.dhash, b.dhash) * w.dhash
            + hash_similarity(a.ahash, b.ahash) * w.ahash
            + histogram_similarity * w.histogram
        )

        return VideoComparison(
            similarity=similarity,
            is_same_video=phash_distance <= self.thresholds.block,
            phash_distance=phash_distance,
            dhash_distance=dhash_distance,
            ahash_distance=ahash_distance,
            histogram_similarity=histogram_similarity,
        )
