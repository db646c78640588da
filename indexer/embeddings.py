# docsearch embeddings module
# Wraps a sentence-transformers encoder behind a single lock

import asyncio
import logging
import threading
from pathlib import Path

import numpy as np
from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class ModelLoadError(RuntimeError):
    """Raised when encoder artifacts are missing or cannot be loaded."""


class EmbeddingError(RuntimeError):
    """Raised when tokenization or inference fails for one text."""


class EmbeddingService:
    """Turns text into fixed-dimension, L2-normalized vectors.

    The encoder is loaded once and held for the lifetime of the process. It is
    not assumed to be safe for concurrent use, so every call, whether from the
    crawl or from a search request, goes through the same lock.
    """

    def __init__(self, model_name: str, device: str = "cpu", local_files_only: bool = True):
        """
        Initialize embedding service

        Args:
            model_name: Local model directory, or hub name when downloads are allowed
            device: Torch device for inference
            local_files_only: Fail instead of downloading missing artifacts
        """
        self.model_name = model_name
        self.device = device
        self.local_files_only = local_files_only
        self._lock = threading.Lock()
        self.model = self._load_model()
        self.dimension = self.model.get_sentence_embedding_dimension()

    def _load_model(self) -> SentenceTransformer:
        """Load the sentence transformer model"""
        if self.local_files_only and not Path(self.model_name).is_dir():
            raise ModelLoadError(f"Embedding model directory not found: {self.model_name}")

        try:
            logger.info(f"Loading embedding model: {self.model_name}")
            model = SentenceTransformer(self.model_name, device=self.device)
        except Exception as e:
            raise ModelLoadError(f"Failed to load embedding model {self.model_name}: {e}") from e

        logger.info(f"Model loaded successfully. Embedding dimension: {model.get_sentence_embedding_dimension()}")
        return model

    def embed(self, text: str) -> np.ndarray:
        """Generate a normalized embedding for a single text.

        One encode call per text: mean pooling over the token states, then
        L2 normalization.

        Raises:
            EmbeddingError: if tokenization or inference fails.
        """
        with self._lock:
            try:
                embedding = self.model.encode(
                    text,
                    batch_size=1,
                    convert_to_numpy=True,
                    normalize_embeddings=True,
                    show_progress_bar=False,
                )
            except Exception as e:
                raise EmbeddingError(f"Embedding failed: {e}") from e

        embedding = np.asarray(embedding, dtype=np.float32)
        if embedding.shape != (self.dimension,):
            raise EmbeddingError(
                f"Model returned shape {embedding.shape}, expected ({self.dimension},)"
            )
        return embedding

    async def aembed(self, text: str) -> np.ndarray:
        """Run :meth:`embed` on the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.embed, text)
