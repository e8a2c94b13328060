"""Configuration management for Roamdex."""

from pathlib import Path
from typing import Optional, List
import yaml
from pydantic import BaseModel, Field, field_validator
from loguru import logger

from .models import COLLECTIONS


def _check_unit_interval(name: str, v: float) -> float:
    if not 0 <= v <= 1:
        raise ValueError(f"{name} must be between 0 and 1")
    return v


class IndexConfig(BaseModel):
    refresh_interval_s: float = 300.0
    match_threshold: float = 0.4
    min_match_length: int = 2
    collections: List[str] = Field(default_factory=lambda: list(COLLECTIONS))

    @field_validator('match_threshold')
    @classmethod
    def validate_match_threshold(cls, v: float) -> float:
        return _check_unit_interval('match_threshold', v)


class SearchConfig(BaseModel):
    limit: int = 20
    threshold: float = 0.3
    snippet_length: int = 150
    exact_tier_authoritative: bool = True

    @field_validator('threshold')
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        return _check_unit_interval('threshold', v)


class TierWeights(BaseModel):
    """Multipliers applied to each tier's raw score."""
    exact: float = 1.0
    fuzzy: float = 0.8
    terms: float = 0.6
    entity: float = 0.7
    location_filter: float = 0.8
    person_filter: float = 0.9


class EnrichmentConfig(BaseModel):
    enabled: bool = False
    base_url: str = "http://localhost:54321/functions/v1"
    api_key: Optional[str] = None
    timeout_s: float = 3.0
    min_query_length: int = 8
    min_results: int = 5
    max_context: int = 3
    failure_threshold: int = 5
    recovery_timeout_s: int = 60


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None


class Config(BaseModel):
    """Main configuration for Roamdex."""

    vault_path: Path
    index: IndexConfig = Field(default_factory=IndexConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    weights: TierWeights = Field(default_factory=TierWeights)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('vault_path')
    @classmethod
    def validate_vault_path(cls, v: Path) -> Path:
        if isinstance(v, str):
            v = Path(v)
        v = v.expanduser().resolve()
        if not v.exists():
            logger.warning(f"Vault path does not exist, will create: {v}")
            v.mkdir(parents=True, exist_ok=True)
        return v

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            candidates = [
                Path("roamdex.yaml"),
                Path.home() / ".config" / "roamdex" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    f"No config file found. Searched: {[str(c) for c in candidates]}"
                )

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False)
