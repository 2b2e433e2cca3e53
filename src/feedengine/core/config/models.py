"""
Configuration Models

Pydantic models for type-safe engine configuration with validation,
defaults, and field documentation.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict


class CompilerConfig(BaseModel):
    """Structural limits applied by the filter tree compiler."""

    max_blocks: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Hard cap on filter blocks per feed"
    )
    warn_blocks: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Block count above which a performance warning is returned"
    )

    @model_validator(mode='after')
    def validate_thresholds(self):
        """The warning threshold must sit below the hard cap."""
        if self.warn_blocks > self.max_blocks:
            raise ValueError("warn_blocks cannot be greater than max_blocks")
        return self


class EvaluationConfig(BaseModel):
    """Time budgets and page sizes for feed evaluation."""

    preview_budget_ms: int = Field(
        default=500,
        ge=10,
        le=60000,
        description="Wall-clock budget for builder preview evaluations (milliseconds)"
    )
    page_budget_ms: int = Field(
        default=2000,
        ge=10,
        le=120000,
        description="Wall-clock budget for paginated feed fetches (milliseconds)"
    )
    default_page_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Page size used when the caller does not pass one"
    )
    max_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Largest page a caller may request"
    )

    @model_validator(mode='after')
    def validate_page_sizes(self):
        """Default page size must be allowed by the maximum."""
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self


class CacheConfig(BaseModel):
    """Result cache sizing and expiry."""

    ttl_seconds: float = Field(
        default=120.0,
        gt=0,
        le=3600,
        description="Lifetime of a cached result page"
    )
    max_entries: int = Field(
        default=4096,
        ge=1,
        description="Maximum cached pages across all shards"
    )
    shards: int = Field(
        default=16,
        ge=1,
        le=1024,
        description="Number of independently locked cache shards"
    )
    wait_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long a caller waits on another caller's in-flight computation"
    )


class StoreConfig(BaseModel):
    """Feed definition persistence."""

    backend: str = Field(
        default="memory",
        description="Persistence backend (memory, sqlite)"
    )
    db_path: Path = Field(
        default=Path(".feedengine") / "feeds.db",
        description="SQLite database path when backend is sqlite"
    )
    max_connections: int = Field(
        default=5,
        ge=1,
        le=50,
        description="SQLite connection pool size"
    )

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        """Validate the backend is supported."""
        valid_backends = {'memory', 'sqlite'}
        if v.lower() not in valid_backends:
            raise ValueError(f"Store backend must be one of: {', '.join(sorted(valid_backends))}")
        return v.lower()


class BuilderConfig(BaseModel):
    """Builder session behaviour."""

    preview_debounce_ms: int = Field(
        default=250,
        ge=0,
        le=10000,
        description="Quiet period after the last edit before a preview is evaluated"
    )
    preview_page_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Number of entries returned by a live preview"
    )
    session_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Idle time after which a builder session is discarded"
    )


class WorkerConfig(BaseModel):
    """Shared evaluation worker pool."""

    max_workers: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Evaluation threads, sized to the corpus I/O fan-out"
    )


class EngineConfig(BaseModel):
    """Root engine configuration model."""

    compiler: CompilerConfig = Field(default_factory=CompilerConfig, description="Compiler limits")
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig, description="Evaluation budgets")
    cache: CacheConfig = Field(default_factory=CacheConfig, description="Result cache settings")
    store: StoreConfig = Field(default_factory=StoreConfig, description="Feed store settings")
    builder: BuilderConfig = Field(default_factory=BuilderConfig, description="Builder session settings")
    workers: WorkerConfig = Field(default_factory=WorkerConfig, description="Worker pool settings")

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with detailed logging"
    )

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate and normalize the logging level name."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    def get_effective_log_level(self) -> str:
        """Debug mode forces DEBUG logging."""
        return "DEBUG" if self.debug else self.log_level

    def preview_budget_seconds(self) -> float:
        return self.evaluation.preview_budget_ms / 1000.0

    def page_budget_seconds(self) -> float:
        return self.evaluation.page_budget_ms / 1000.0

    def sqlite_path(self) -> Optional[Path]:
        """Database path when the sqlite backend is selected."""
        if self.store.backend == "sqlite":
            return self.store.db_path
        return None
