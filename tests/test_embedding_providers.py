import sys
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from milvus_store.embedding_providers import FunctionEmbeddingProvider, OpenAIProvider


class TestFunctionEmbeddingProvider:
    def test_numpy_output_converted(self):
        provider = FunctionEmbeddingProvider(lambda text: np.ones(4, dtype=np.float32))
        assert provider.embed_text("a") == [1.0, 1.0, 1.0, 1.0]
        assert provider.get_dimension() == 4

    def test_batch(self):
        provider = FunctionEmbeddingProvider(lambda text: [float(len(text))], dimension=1)
        assert provider.embed_batch(["a", "abc"]) == [[1.0], [3.0]]

    def test_dimension_mismatch(self):
        provider = FunctionEmbeddingProvider(lambda text: [0.0] * len(text), dimension=2)
        with pytest.raises(ValueError):
            provider.embed_text("abc")

    def test_dimension_unknown_before_first_call(self):
        with pytest.raises(ValueError):
            FunctionEmbeddingProvider(lambda text: [0.0]).get_dimension()


class TestOpenAIProvider:
    def test_uses_explicit_key(self):
        openai = MagicMock()
        item = MagicMock(embedding=[0.1, 0.2])
        openai.OpenAI.return_value.embeddings.create.return_value = MagicMock(data=[item, item])

        with patch.dict(sys.modules, {"openai": openai}):
            provider = OpenAIProvider(model_name="text-embedding-3-large", api_key="sk-test")

        openai.OpenAI.assert_called_once_with(api_key="sk-test")
        assert provider.embed_batch(["a", "b"]) == [[0.1, 0.2], [0.1, 0.2]]
        assert provider.get_dimension() == 3072

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with patch.dict(sys.modules, {"openai": MagicMock()}):
            with pytest.raises(ValueError):
                OpenAIProvider()
