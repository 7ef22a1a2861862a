"""
Configuration for the retrieval core, read from environment variables.

Values may also come from a ``.env`` file in the working directory.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

VERSION = "1.0.0"

# Embedding
MAX_TOKENS = 100  # tokens beyond this are ignored
WORD_VECTOR_PROVIDERS = ["hash", "file", "sentence-transformers"]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


@dataclass
class RecallConfig:
    """Settings handed to ``build_service``. Read once, then passed explicitly."""

    db_path: str = "./data/recall.db"
    word_vector_provider: str = "hash"  # hash|file|sentence-transformers
    word_vector_path: Optional[str] = None
    embed_model_name: str = "all-MiniLM-L6-v2"
    embed_dim: int = 300
    embed_cache_size: int = 1000
    search_workers: int = 4
    search_batch_size: int = 512
    backfill_batch_size: int = 100
    backfill_on_start: bool = False
    debug: bool = False

    @classmethod
    def from_env(cls) -> "RecallConfig":
        """Build a config from the current environment."""
        return cls(
            db_path=os.getenv("RECALL_DB_PATH", "./data/recall.db"),
            word_vector_provider=os.getenv("WORD_VECTOR_PROVIDER", "hash"),
            word_vector_path=os.getenv("WORD_VECTOR_PATH"),
            embed_model_name=os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2"),
            embed_dim=_env_int("EMBED_DIM", "300"),
            embed_cache_size=_env_int("EMBED_CACHE_SIZE", "1000"),
            search_workers=_env_int("SEARCH_WORKERS", "4"),
            search_batch_size=_env_int("SEARCH_BATCH_SIZE", "512"),
            backfill_batch_size=_env_int("BACKFILL_BATCH_SIZE", "100"),
            backfill_on_start=_env_bool("BACKFILL_ON_START", "false"),
            debug=_env_bool("DEBUG", "false"),
        )


def validate_config(config: RecallConfig) -> List[str]:
    """Validate configuration and return any issues."""
    issues = []

    if config.word_vector_provider not in WORD_VECTOR_PROVIDERS:
        issues.append(f"Invalid WORD_VECTOR_PROVIDER: {config.word_vector_provider}")

    if config.word_vector_provider == "file" and not config.word_vector_path:
        issues.append("WORD_VECTOR_PROVIDER=file requires WORD_VECTOR_PATH")

    if config.embed_dim < 1:
        issues.append("EMBED_DIM must be >= 1")

    if config.embed_cache_size < 1:
        issues.append("EMBED_CACHE_SIZE must be >= 1")

    if config.search_workers < 1:
        issues.append("SEARCH_WORKERS must be >= 1")

    if config.search_batch_size < 1:
        issues.append("SEARCH_BATCH_SIZE must be >= 1")

    if config.backfill_batch_size < 1:
        issues.append("BACKFILL_BATCH_SIZE must be >= 1")

    return issues


def ensure_db_directory(db_path: str):
    """Ensure the database directory exists."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
