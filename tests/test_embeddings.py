"""Tests for the embedding service wrapper."""

import threading
from unittest.mock import Mock, patch

import numpy as np
import pytest

from indexer.embeddings import EmbeddingError, EmbeddingService, ModelLoadError


@pytest.fixture
def mock_model():
    model = Mock()
    model.get_sentence_embedding_dimension.return_value = 4
    model.encode.side_effect = lambda text, **kwargs: np.array([0.5, 0.5, 0.5, 0.5], dtype=np.float64)
    return model


@pytest.fixture
def service(tmp_path, mock_model):
    with patch("indexer.embeddings.SentenceTransformer", return_value=mock_model) as st:
        svc = EmbeddingService(str(tmp_path), device="cpu")
        st.assert_called_once_with(str(tmp_path), device="cpu")
    return svc


class TestEmbeddingService:

    def test_dimension(self, service):
        assert service.dimension == 4

    def test_embed_returns_float32_vector(self, service, mock_model):
        vector = service.embed("hello world")

        assert vector.dtype == np.float32
        assert vector.shape == (4,)
        mock_model.encode.assert_called_once()
        args, kwargs = mock_model.encode.call_args
        assert args == ("hello world",)
        assert kwargs["batch_size"] == 1
        assert kwargs["normalize_embeddings"] is True

    def test_same_text_gives_identical_bits(self, service):
        first = service.embed("hello world")
        second = service.embed("hello world")

        assert first.tobytes() == second.tobytes()

    def test_inference_failure(self, service, mock_model):
        mock_model.encode.side_effect = RuntimeError("CUDA out of memory")

        with pytest.raises(EmbeddingError, match="out of memory"):
            service.embed("text")

    def test_wrong_shape_from_model(self, service, mock_model):
        mock_model.encode.side_effect = lambda text, **kwargs: np.zeros(3)

        with pytest.raises(EmbeddingError):
            service.embed("text")

    def test_calls_are_serialised(self, service, mock_model):
        active = []
        overlap = []

        def slow_encode(text, **kwargs):
            active.append(text)
            if len(active) > 1:
                overlap.append(text)
            threading.Event().wait(0.01)
            active.remove(text)
            return np.ones(4) / 2

        mock_model.encode.side_effect = slow_encode
        threads = [threading.Thread(target=service.embed, args=(f"t{i}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlap == []
        assert mock_model.encode.call_count == 8

    @pytest.mark.asyncio
    async def test_aembed(self, service):
        vector = await service.aembed("hello")
        assert vector.shape == (4,)


class TestModelLoading:

    def test_missing_local_model(self, tmp_path):
        with pytest.raises(ModelLoadError, match="not found"):
            EmbeddingService(str(tmp_path / "missing-model"))

    def test_unloadable_model(self, tmp_path):
        with patch("indexer.embeddings.SentenceTransformer", side_effect=OSError("no config.json")):
            with pytest.raises(ModelLoadError, match="config.json"):
                EmbeddingService(str(tmp_path))

    def test_hub_name_allowed_when_downloads_enabled(self, mock_model):
        with patch("indexer.embeddings.SentenceTransformer", return_value=mock_model) as st:
            service = EmbeddingService("sentence-transformers/all-MiniLM-L6-v2", local_files_only=False)

        st.assert_called_once()
        assert service.dimension == 4
