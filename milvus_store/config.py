"""
Configuration for the Milvus store.

Connection settings come from ``MILVUS_*`` environment variables or a
``.env`` file; a YAML file can provide or override the whole configuration.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from milvus_store.embedding_providers import (
    DenseEmbeddingProvider,
    OpenAIProvider,
    SentenceTransformersProvider,
)


class MetricType(str, Enum):
    COSINE = "COSINE"
    IP = "IP"
    L2 = "L2"


class IndexType(str, Enum):
    AUTOINDEX = "AUTOINDEX"
    FLAT = "FLAT"
    HNSW = "HNSW"
    IVF_FLAT = "IVF_FLAT"
    IVF_SQ8 = "IVF_SQ8"


class EmbeddingProviderType(str, Enum):
    NONE = "none"
    SENTENCE_TRANSFORMERS = "sentence_transformers"
    OPENAI = "openai"


class MilvusConfig(BaseSettings):
    """Milvus connection and default collection settings"""

    # Connection
    uri: str = "http://localhost:19530"
    token: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    db_name: str = "default"
    timeout: Optional[float] = None

    # Default collection
    collection_name: str = "vector_store"
    embedding_dimension: int = Field(default=1536, gt=0)
    metric_type: MetricType = MetricType.COSINE
    index_type: IndexType = IndexType.AUTOINDEX
    enable_bm25: bool = True
    initialize_schema: bool = False

    model_config = SettingsConfigDict(
        env_prefix="MILVUS_", env_file=".env", case_sensitive=False, extra="ignore"
    )


class EmbeddingConfig(BaseModel):
    """Configuration for the dense embedding provider"""

    provider: EmbeddingProviderType = EmbeddingProviderType.NONE
    model_name: Optional[str] = None
    device: str = "cpu"
    api_key: Optional[str] = None

    @model_validator(mode="after")
    def get_api_key(self) -> "EmbeddingConfig":
        if self.api_key is None and self.provider == EmbeddingProviderType.OPENAI:
            self.api_key = os.getenv("OPENAI_API_KEY")
        return self

    def create_provider(self) -> Optional[DenseEmbeddingProvider]:
        """Build the configured provider, or None when no provider is set."""
        if self.provider == EmbeddingProviderType.SENTENCE_TRANSFORMERS:
            return SentenceTransformersProvider(
                model_name=self.model_name or "all-MiniLM-L6-v2", device=self.device
            )
        if self.provider == EmbeddingProviderType.OPENAI:
            return OpenAIProvider(
                model_name=self.model_name or "text-embedding-3-small", api_key=self.api_key
            )
        return None


class StoreConfig(BaseModel):
    """Main configuration for the store"""

    milvus: MilvusConfig = Field(default_factory=MilvusConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> "StoreConfig":
        """Load configuration from YAML file"""
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
        return cls(**config_data)

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """Save configuration to YAML file"""
        with open(output_path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)


def load_config(config_path: Optional[Union[str, Path]] = None) -> StoreConfig:
    """
    Load configuration from file or from the environment.

    Args:
        config_path: Path to YAML configuration file. If None, settings come
            from MILVUS_* environment variables and defaults.

    Returns:
        StoreConfig: Loaded configuration
    """
    if config_path:
        return StoreConfig.from_yaml(config_path)
    return StoreConfig()
