"""Duplicate detection policy and video comparison."""

import pytest

from frameproof.core.configs import DuplicateThresholds, SimilarityWeights
from frameproof.core.duplicates import (
    CorpusEntry,
    DuplicateDetector,
    HashType,
    Recommendation,
)
from frameproof.core.errors import HashLengthMismatchError
from frameproof.core.fingerprint import FrameHash, PerceptualHashData

BASE = "0000000000000000"
DIGEST = "d" * 64


def _bits(count: int) -> str:
    """64-bit hash at Hamming distance ``count`` from BASE."""
    return format((1 << count) - 1, "016x")


def _fingerprint(phash: str = BASE, dhash: str = BASE, ahash: str = BASE, hist=None) -> PerceptualHashData:
    return PerceptualHashData(
        phash=phash,
        dhash=dhash,
        ahash=ahash,
        frame_hashes=(FrameHash(timestamp=0, phash=phash, dhash=dhash),),
        color_histogram=tuple(hist if hist is not None else [1.0] + [0.0] * 191),
    )


def _entry(vid: str, phash: str, dhash=None, sha: str = "e" * 64, creator=None) -> CorpusEntry:
    return CorpusEntry(
        verification_id=f"ver-{vid}",
        video_id=f"vid-{vid}",
        sha256_hash=sha,
        phash=phash,
        dhash=dhash,
        creator_name=creator,
    )


# ============================================================================
# check()
# ============================================================================


def test_exact_digest_blocks_regardless_of_phash():
    detector = DuplicateDetector()
    corpus = [_entry("1", "ffffffffffffffff", sha=DIGEST, creator="alice")]

    result = detector.check(_fingerprint(), DIGEST, corpus)

    assert result.recommendation is Recommendation.BLOCK
    assert result.is_duplicate is True
    assert result.confidence == 1.0
    assert len(result.matches) == 1
    match = result.matches[0]
    assert match.hash_type is HashType.SHA256
    assert match.similarity == 1.0
    assert match.distance == 0
    assert result.original_verification_id == "ver-1"
    assert result.original_video_id == "vid-1"
    assert result.original_creator_name == "alice"


@pytest.mark.parametrize("distance,expected", [
    (0, Recommendation.BLOCK),
    (3, Recommendation.BLOCK),
    (4, Recommendation.WARN),
    (10, Recommendation.WARN),
    (11, Recommendation.ALLOW),
    (15, Recommendation.ALLOW),
])
def test_phash_thresholds(distance, expected):
    detector = DuplicateDetector()
    result = detector.check(_fingerprint(), DIGEST, [_entry("1", _bits(distance))])

    assert result.recommendation is expected
    assert result.is_duplicate is (expected is not Recommendation.ALLOW)
    assert len(result.matches) == 1
    assert result.matches[0].hash_type is HashType.PHASH
    assert result.matches[0].distance == distance
    assert result.confidence == pytest.approx(1 - distance / 64)


def test_beyond_low_similarity_is_not_a_match():
    detector = DuplicateDetector()
    result = detector.check(_fingerprint(), DIGEST, [_entry("1", _bits(16))])

    assert result.matches == []
    assert result.recommendation is Recommendation.ALLOW
    assert result.is_duplicate is False
    assert result.confidence == 0.0
    assert result.original_verification_id is None


def test_empty_corpus():
    result = DuplicateDetector().check(_fingerprint(), DIGEST, [])
    assert result.recommendation is Recommendation.ALLOW
    assert result.matches == []


def test_best_match_per_verification():
    """pHash and dHash matches on the same entry collapse to the stronger one."""
    detector = DuplicateDetector()
    corpus = [_entry("1", _bits(5), dhash=_bits(2))]

    result = detector.check(_fingerprint(), DIGEST, corpus)

    assert len(result.matches) == 1
    assert result.matches[0].hash_type is HashType.DHASH
    assert result.matches[0].distance == 2
    assert result.recommendation is Recommendation.BLOCK


def test_dhash_ignored_without_corpus_dhash():
    detector = DuplicateDetector()
    result = detector.check(_fingerprint(), DIGEST, [_entry("1", _bits(12), dhash=None)])
    assert result.matches[0].hash_type is HashType.PHASH
    assert result.recommendation is Recommendation.ALLOW


def test_matches_sorted_by_similarity():
    detector = DuplicateDetector()
    corpus = [
        _entry("far", _bits(12)),
        _entry("near", _bits(2), creator="bob"),
        _entry("mid", _bits(7)),
        _entry("none", _bits(40)),
    ]

    result = detector.check(_fingerprint(), DIGEST, corpus)

    assert [m.verification_id for m in result.matches] == ["ver-near", "ver-mid", "ver-far"]
    assert result.original_creator_name == "bob"
    assert result.recommendation is Recommendation.BLOCK


def test_exact_digest_outranks_equal_perceptual_match():
    detector = DuplicateDetector()
    corpus = [_entry("perceptual", BASE), _entry("exact", _bits(30), sha=DIGEST)]

    result = detector.check(_fingerprint(), DIGEST, corpus)

    assert result.matches[0].hash_type is HashType.SHA256
    assert result.original_verification_id == "ver-exact"


def test_dict_corpus_entries():
    corpus = [{
        "verificationId": "ver-9",
        "videoId": "vid-9",
        "sha256Hash": "f" * 64,
        "phash": _bits(6),
        "creatorName": "carol",
    }]
    result = DuplicateDetector().check(_fingerprint(), DIGEST, corpus)
    assert result.recommendation is Recommendation.WARN
    assert result.original_creator_name == "carol"


def test_injected_thresholds():
    detector = DuplicateDetector(DuplicateThresholds(block=0, warn=1, low_similarity=2))

    assert detector.check(_fingerprint(), DIGEST, [_entry("1", _bits(0))]).recommendation is Recommendation.BLOCK
    assert detector.check(_fingerprint(), DIGEST, [_entry("1", _bits(1))]).recommendation is Recommendation.WARN
    assert detector.check(_fingerprint(), DIGEST, [_entry("1", _bits(2))]).recommendation is Recommendation.ALLOW
    assert detector.check(_fingerprint(), DIGEST, [_entry("1", _bits(3))]).matches == []


def test_hash_length_mismatch_propagates():
    with pytest.raises(HashLengthMismatchError):
        DuplicateDetector().check(_fingerprint(), DIGEST, [_entry("1", "00")])


def test_result_to_dict():
    result = DuplicateDetector().check(_fingerprint(), DIGEST, [_entry("1", _bits(4))])
    data = result.to_dict()
    assert data["recommendation"] == "warn"
    assert data["isDuplicate"] is True
    assert data["originalVideoId"] == "vid-1"
    assert "originalCreatorName" not in data
    assert data["matches"][0] == {
        "verificationId": "ver-1",
        "videoId": "vid-1",
        "hashType": "phash",
        "similarity": pytest.approx(60 / 64),
        "distance": 4,
    }


# ============================================================================
# compare_videos()
# ============================================================================


def test_compare_identical_videos():
    fp = _fingerprint(phash=_bits(20), dhash=_bits(9), ahash=_bits(33))
    result = DuplicateDetector().compare_videos(fp, fp)

    assert result.similarity == pytest.approx(1.0)
    assert result.is_same_video is True
    assert result.phash_distance == 0
    assert result.histogram_similarity == pytest.approx(1.0)


def test_compare_weighted_similarity():
    a = _fingerprint()
    b = _fingerprint(phash=_bits(4), dhash=_bits(8), ahash=_bits(16), hist=[0.0, 1.0] + [0.0] * 190)

    result = DuplicateDetector().compare_videos(a, b)

    expected = 0.4 * (60 / 64) + 0.3 * (56 / 64) + 0.1 * (48 / 64) + 0.2 * 0.0
    assert result.similarity == pytest.approx(expected)
    assert result.is_same_video is False
    assert result.phash_distance == 4
    assert result.dhash_distance == 8
    assert result.ahash_distance == 16
    assert result.histogram_similarity == 0.0


def test_compare_custom_weights():
    detector = DuplicateDetector(weights=SimilarityWeights(phash=1.0, dhash=0.0, ahash=0.0, histogram=0.0))
    result = detector.compare_videos(_fingerprint(), _fingerprint(phash=_bits(3), dhash=_bits(64)))
    assert result.similarity == pytest.approx(61 / 64)
    assert result.is_same_video is True
