"""
Search Configuration

Loads tunables for chunking, embedding and fusion from a YAML file,
then applies RECALL_* environment overrides (a local .env is honoured).

Usage:
    from core.config import load_config

    config = load_config()                       # config/search_config.yaml if present
    config = load_config(Path("my_config.yaml"))
    print(config.max_chunk_tokens)

Example YAML:
    search:
      embedding_model: all-MiniLM-L6-v2
      embedding_dimensions: 256
      similarity_threshold: 0.5
      max_chunk_tokens: 500
      rrf_k: 60
"""

import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "search_config.yaml"
ENV_PREFIX = "RECALL_"


@dataclass
class SearchConfig:
    """Tunables for the retrieval core."""
    embedding_model: str = 'all-MiniLM-L6-v2'
    embedding_dimensions: int = 256
    similarity_threshold: float = 0.5
    max_chunk_tokens: int = 500
    # Empirical RRF constant; larger values flatten rank differences
    rrf_k: float = 60.0
    default_limit: int = 20
    vector_db_path: str = 'data/vector_index.db'
    recordings_path: str = 'data/recordings.jsonl'
    log_level: str = 'INFO'
    log_json: bool = False

    def validate(self) -> None:
        """Raise ConfigurationError for out-of-range values."""
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                "similarity_threshold must be within [-1, 1]",
                similarity_threshold=self.similarity_threshold
            )
        for name in ('embedding_dimensions', 'max_chunk_tokens', 'default_limit'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", **{name: getattr(self, name)})
        if self.rrf_k < 0:
            raise ConfigurationError("rrf_k must not be negative", rrf_k=self.rrf_k)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(raw: str, target_type: type, name: str) -> Any:
    """Convert an environment string to the field's type."""
    if target_type is bool:
        return raw.strip().lower() in ('1', 'true', 'yes', 'on')
    try:
        return target_type(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e


def _apply_overrides(values: Dict[str, Any], source: Dict[str, Any]) -> None:
    known = {f.name for f in fields(SearchConfig)}
    for key, value in source.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        values[key] = value


def load_config(config_path: Optional[Path] = None, use_env: bool = True) -> SearchConfig:
    """
    Build a SearchConfig from YAML and environment.

    Args:
        config_path: Path to config YAML (uses the default location if None;
                     a missing default file is not an error)
        use_env: Apply RECALL_* environment variables on top of the file

    Returns:
        Validated SearchConfig
    """
    values: Dict[str, Any] = {}

    explicit = config_path is not None
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Config file must contain a mapping", path=str(config_path))
        section = data.get("search", data)
        if not isinstance(section, dict):
            raise ConfigurationError("'search' section must be a mapping", path=str(config_path))
        _apply_overrides(values, section)
    elif explicit:
        raise ConfigurationError(f"Config file not found: {config_path}")

    if use_env:
        load_dotenv()
        for f in fields(SearchConfig):
            raw = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                default_type = type(getattr(SearchConfig, f.name))
                values[f.name] = _coerce(raw, default_type, f.name)

    try:
        config = SearchConfig(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    config.validate()
    return config
