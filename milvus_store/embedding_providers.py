"""
Dense embedding providers used to embed text queries and documents.

Sparse vectors are not computed client-side: the collection's BM25 function
generates them from the content field.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence
import logging
import os

import numpy as np

logger = logging.getLogger(__name__)

OPENAI_DIMENSIONS = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}


class DenseEmbeddingProvider(ABC):
    """Base dense embedding provider interface."""

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Embed a single text string."""
        pass

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of text strings."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get embedding dimension."""
        pass


class SentenceTransformersProvider(DenseEmbeddingProvider):
    """Local SentenceTransformers provider."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str = "cpu"):
        self.model_name = model_name
        self.device = device
        self._load_model()

    def _load_model(self):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError("pip install sentence-transformers")

        self.model = SentenceTransformer(self.model_name, device=self.device)
        logger.info(f"Loaded SentenceTransformers model: {self.model_name}")

    def embed_text(self, text: str) -> List[float]:
        return self.model.encode([text])[0].tolist()

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return self.model.encode(texts).tolist()

    def get_dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()


class OpenAIProvider(DenseEmbeddingProvider):
    """OpenAI embedding provider."""

    def __init__(self, model_name: str = "text-embedding-3-small", api_key: Optional[str] = None):
        self.model_name = model_name
        self._setup_client(api_key)

    def _setup_client(self, api_key: Optional[str]):
        try:
            import openai
        except ImportError:
            raise ImportError("pip install openai")

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY not found")

        self.client = openai.OpenAI(api_key=api_key)
        logger.info(f"Initialized OpenAI provider: {self.model_name}")

    def embed_text(self, text: str) -> List[float]:
        response = self.client.embeddings.create(model=self.model_name, input=text)
        return response.data[0].embedding

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        response = self.client.embeddings.create(model=self.model_name, input=texts)
        return [item.embedding for item in response.data]

    def get_dimension(self) -> int:
        return OPENAI_DIMENSIONS.get(self.model_name, 1536)


class FunctionEmbeddingProvider(DenseEmbeddingProvider):
    """
    Wraps a plain callable ``text -> vector``.

    Useful for tests and for models loaded elsewhere. The callable may return
    a list or a numpy array. If dimension is not given it is taken from the
    first vector produced.
    """

    def __init__(self, fn: Callable[[str], Sequence[float]], dimension: Optional[int] = None):
        self.fn = fn
        self._dimension = dimension

    def embed_text(self, text: str) -> List[float]:
        vector = np.asarray(self.fn(text), dtype=float).ravel().tolist()
        if self._dimension is None:
            self._dimension = len(vector)
        elif len(vector) != self._dimension:
            raise ValueError(
                f"Embedding has dimension {len(vector)}, expected {self._dimension}"
            )
        return vector

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]

    def get_dimension(self) -> int:
        if self._dimension is None:
            raise ValueError("Dimension unknown until the first text is embedded")
        return self._dimension
