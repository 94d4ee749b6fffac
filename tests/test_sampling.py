"""Tests for the frame sampling schedule and scratch directories."""

import pytest
from loguru import logger

from frameproof.core import sampling
from frameproof.core.configs import SamplingConfig, SamplingTier
from frameproof.core.sampling import SampledFrame, SamplingPlan, plan_timestamps, sampling_plan, scratch_directory


@pytest.mark.parametrize("duration,interval,max_frames", [
    (0, 1000, 30),
    (12.5, 1000, 30),
    (30, 1000, 30),
    (30.01, 2000, 150),
    (300, 2000, 150),
    (301, 5000, 360),
    (1800, 5000, 360),
    (1800.5, 10000, 500),
    (7200, 10000, 500),
])
def test_sampling_tiers(duration, interval, max_frames):
    assert sampling_plan(duration) == SamplingPlan(interval_ms=interval, max_frames=max_frames)


def test_sampling_negative_duration():
    with pytest.raises(ValueError):
        sampling_plan(-1)


def test_plan_timestamps():
    assert plan_timestamps(10) == [i * 1000 for i in range(10)]
    assert len(plan_timestamps(10.5)) == 11
    assert plan_timestamps(0) == []


def test_plan_timestamps_capped():
    """A 2-hour video hits the 500-frame cap."""
    stamps = plan_timestamps(7200)
    assert len(stamps) == 500
    assert stamps[-1] == 499 * 10000


def test_custom_sampling_config():
    config = SamplingConfig(tiers=[
        SamplingTier(max_duration_sec=60, interval_ms=500, max_frames=10),
        SamplingTier(interval_ms=3000, max_frames=20),
    ])
    assert sampling_plan(45, config) == SamplingPlan(interval_ms=500, max_frames=10)
    assert plan_timestamps(45, config) == [i * 500 for i in range(10)]
    assert sampling_plan(61, config).interval_ms == 3000


def test_sampled_frame_from_dict():
    frame = SampledFrame.from_dict({"timestampMs": 4000, "imagePath": "/tmp/frame_0004.jpg"})
    assert frame == SampledFrame(timestamp_ms=4000, image_path="/tmp/frame_0004.jpg")
    assert frame.to_dict() == {"timestampMs": 4000, "imagePath": "/tmp/frame_0004.jpg"}


def test_scratch_directory_removed_on_success(tmp_path):
    with scratch_directory(root=tmp_path / "scratch") as scratch:
        (scratch / "frame_0001.jpg").write_bytes(b"data")
        assert scratch.is_dir()
    assert not scratch.exists()


def test_scratch_directory_removed_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with scratch_directory(root=tmp_path) as scratch:
            (scratch / "frame_0001.jpg").write_bytes(b"data")
            raise RuntimeError("extraction failed")
    assert not scratch.exists()


def test_scratch_cleanup_failure_is_logged(tmp_path, monkeypatch):
    """A failing removal is logged as a warning and not raised."""
    def broken_rmtree(path):
        raise OSError("device busy")

    monkeypatch.setattr(sampling.shutil, "rmtree", broken_rmtree)
    messages = []
    sink_id = logger.add(messages.append, level="WARNING")
    try:
        with scratch_directory(root=tmp_path) as scratch:
            pass
    finally:
        logger.remove(sink_id)

    assert scratch.exists()
    assert any("device busy" in str(m) for m in messages)
