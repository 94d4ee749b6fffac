"""Configuration management for the fingerprinting engine."""

from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class HashingConfig(BaseModel):
    """Image hash geometry."""
    hash_size: int = Field(default=8, ge=2, le=64, description="Side of the aHash/dHash/pHash bit grid")
    phash_size: int = Field(default=32, ge=4, le=256, description="Side of the DCT input image")
    histogram_bins: int = Field(default=64, ge=1, le=256, description="Bins per colour channel")
    histogram_size: int = Field(default=64, ge=1, le=1024, description="Side of the histogram sampling image")

    @model_validator(mode="after")
    def validate_phash_size(self) -> "HashingConfig":
        """The DCT block must be large enough to hold the low-frequency grid."""
        if self.phash_size < self.hash_size:
            raise ValueError(
                f"phash_size ({self.phash_size}) must be >= hash_size ({self.hash_size})"
            )
        return self


class DuplicateThresholds(BaseModel):
    """Hamming-distance thresholds for the duplicate policy (in bits)."""
    block: int = Field(default=3, ge=0, description="Distance at or below which uploads are blocked")
    warn: int = Field(default=10, ge=0, description="Distance at or below which uploads are flagged")
    low_similarity: int = Field(default=15, ge=0, description="Largest distance still recorded as a match")

    @model_validator(mode="after")
    def validate_ordering(self) -> "DuplicateThresholds":
        """Thresholds must nest: block <= warn <= low_similarity."""
        if not self.block <= self.warn <= self.low_similarity:
            raise ValueError(
                "Thresholds must satisfy block <= warn <= low_similarity, "
                f"got {self.block}, {self.warn}, {self.low_similarity}"
            )
        return self


class SimilarityWeights(BaseModel):
    """Weights of the composite video similarity score."""
    phash: float = Field(default=0.4, ge=0.0, le=1.0)
    dhash: float = Field(default=0.3, ge=0.0, le=1.0)
    ahash: float = Field(default=0.1, ge=0.0, le=1.0)
    histogram: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_sum(self) -> "SimilarityWeights":
        total = self.phash + self.dhash + self.ahash + self.histogram
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Similarity weights must sum to 1.0, got {total:.6f}")
        return self


class SamplingTier(BaseModel):
    """One duration bucket of the frame sampling schedule."""
    max_duration_sec: Optional[float] = Field(default=None, gt=0, description="Upper bound (inclusive); None = unbounded")
    interval_ms: int = Field(gt=0, description="Milliseconds between sampled frames")
    max_frames: int = Field(gt=0, description="Cap on sampled frames")


def _default_tiers() -> List[SamplingTier]:
    return [
        SamplingTier(max_duration_sec=30, interval_ms=1000, max_frames=30),
        SamplingTier(max_duration_sec=300, interval_ms=2000, max_frames=150),
        SamplingTier(max_duration_sec=1800, interval_ms=5000, max_frames=360),
        SamplingTier(max_duration_sec=None, interval_ms=10000, max_frames=500),
    ]


class SamplingConfig(BaseModel):
    """Frame sampling schedule by video duration."""
    tiers: List[SamplingTier] = Field(default_factory=_default_tiers, min_length=1)

    @field_validator('tiers')
    @classmethod
    def validate_tiers(cls, v: List[SamplingTier]) -> List[SamplingTier]:
        """Tiers must be ascending and end with an unbounded tier."""
        if v[-1].max_duration_sec is not None:
            raise ValueError("Last sampling tier must be unbounded (max_duration_sec: null)")
        bounds = [t.max_duration_sec for t in v[:-1]]
        if any(b is None for b in bounds):
            raise ValueError("Only the last sampling tier may be unbounded")
        if bounds != sorted(bounds):
            raise ValueError("Sampling tiers must be sorted by max_duration_sec")
        return v


class FingerprintConfig(BaseModel):
    """Fingerprinting run configuration."""
    hashing: HashingConfig = Field(default_factory=HashingConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    frame_timeout_sec: float = Field(default=30.0, gt=0, description="Per-frame hashing timeout")
    max_concurrency: int = Field(default=8, ge=1, le=256, description="Frames hashed at once; timed-out threads finish outside this limit")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: Optional[str] = None


class AppConfig(BaseModel):
    """Top-level engine configuration."""
    fingerprint: FingerprintConfig = Field(default_factory=FingerprintConfig)
    thresholds: DuplicateThresholds = Field(default_factory=DuplicateThresholds)
    weights: SimilarityWeights = Field(default_factory=SimilarityWeights)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def log_path(self) -> Optional[Path]:
        """Get expanded log file path."""
        if not self.logging.log_file:
            return None
        return Path(self.logging.log_file).expanduser()


def load_config(config_path: str | Path) -> AppConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Parsed configuration object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML parsing or validation fails, with field-level detail
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse YAML configuration file {config_path}: {e}")

    if config_data is None:
        raise ValueError(f"Configuration file {config_path} is empty")

    try:
        return AppConfig(**config_data)
    except Exception as e:
        error_msg = f"Configuration validation failed for {config_path}:\n"

        if hasattr(e, 'errors'):
            for err in e.errors():  # type: ignore[attr-defined]
                field_path = ' -> '.join(str(loc) for loc in err['loc'])
                error_msg += f"  - Field '{field_path}': {err['msg']}\n"
                if 'input' in err:
                    error_msg += f"    Got value: {err['input']}\n"
        else:
            error_msg += f"  {str(e)}\n"

        raise ValueError(error_msg) from e


def create_default_config() -> AppConfig:
    """Create default configuration."""
    return AppConfig()


def save_config(config: AppConfig, config_path: str | Path) -> None:
    """Save configuration to YAML file.

    Args:
        config: Configuration object to save
        config_path: Path where to save the configuration
    """
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump()

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(config_dict, f, default_flow_style=False, indent=2)
