"""Deterministic stand-ins for the encoder and the crawler."""

import re
import zlib
from typing import List, Optional

import numpy as np

from indexer.embeddings import EmbeddingError
from pipelines.crawler import FetchedPage


class FakeEmbedder:
    """Bag-of-words hashing encoder with the EmbeddingService interface."""

    dimension = 16

    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.calls: List[str] = []

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingError(f"cannot embed {text!r}")
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(word.encode()) % self.dimension] += 1.0
        norm = np.linalg.norm(vector)
        if norm:
            vector /= norm
        return vector

    async def aembed(self, text: str) -> np.ndarray:
        return self.embed(text)


class FakeCrawler:
    """Returns canned pages instead of fetching."""

    def __init__(self, pages: List[FetchedPage]):
        self.pages = pages
        self.calls = []

    async def crawl(self, root_url: str, max_pages: int) -> List[FetchedPage]:
        self.calls.append((root_url, max_pages))
        return self.pages[:max_pages]


def page(url: str, title: str, *paragraphs: str) -> FetchedPage:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return FetchedPage(url=url, html=f"<html><head><title>{title}</title></head><body>{body}</body></html>")
