"""
Text embeddings for records and knowledge.

Every persisted record carries an embedding so sessions can be searched
by meaning. The default implementation runs a Sentence Transformers model
locally, so no API key is needed.

Example:
    >>> async with SentenceTransformerEmbedder("sentence-transformers/all-MiniLM-L6-v2") as embedder:
    ...     vector = await embedder.embed("Why is the build red?")
    ...     len(vector)
    384
"""

from abc import ABC, abstractmethod
from typing import Literal

from sentence_transformers import SentenceTransformer

from tinkerchat.config.logging import get_logger

logger = get_logger(__name__)


class Embedder(ABC):
    """Turns text into vectors."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Model identifier."""

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Length of the produced vectors."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text."""

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts. Default: one at a time."""
        return [await self.embed(text) for text in texts]

    async def initialize(self) -> None:
        """Load model weights. No-op by default."""

    async def shutdown(self) -> None:
        """Release the model. No-op by default."""

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False


class SentenceTransformerEmbedder(Embedder):
    """
    Sentence Transformers embedder.

    The model is loaded on initialize() (or lazily on first use) and
    released on shutdown(). Vectors are L2-normalized, which suits the
    cosine similarity used by both repositories.

    Attributes:
        model_name: Sentence Transformers model identifier
        device: Device to run on ('cpu' or 'cuda')
        batch_size: Number of texts per encode batch
    """

    def __init__(
        self,
        model_name: str,
        device: Literal["cpu", "cuda"] = "cpu",
        batch_size: int = 32,
    ):
        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self._model: SentenceTransformer | None = None

    @property
    def name(self) -> str:
        return self.model_name

    @property
    def dimensions(self) -> int:
        return self._get_model().get_sentence_embedding_dimension()

    async def initialize(self) -> None:
        """
        Load the embedding model into memory.

        Raises:
            RuntimeError: If model loading fails
        """
        self._get_model()

    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info(f"Loading embedding model: {self.model_name} on {self.device}")
            try:
                self._model = SentenceTransformer(self.model_name, device=self.device)
            except Exception as e:
                logger.error(f"Failed to load embedding model: {e}")
                raise RuntimeError(
                    f"Could not load embedding model '{self.model_name}': {e}"
                ) from e
            logger.info(
                f"Embedding model loaded successfully "
                f"(dimension: {self._model.get_sentence_embedding_dimension()}, device: {self.device})"
            )
        return self._model

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts in batches.

        Raises:
            ValueError: If texts is empty
            RuntimeError: If encoding fails
        """
        if not texts:
            raise ValueError("Cannot embed empty list of texts")

        model = self._get_model()
        logger.debug(f"Generating embeddings for {len(texts)} texts (batch_size={self.batch_size})")

        try:
            embeddings = model.encode(
                texts,
                batch_size=self.batch_size,
                show_progress_bar=False,
                normalize_embeddings=True,
                convert_to_numpy=True,
            )
        except Exception as e:
            logger.error(f"Failed to generate embeddings: {e}")
            raise RuntimeError(f"Embedding generation failed: {e}") from e

        return embeddings.tolist()

    async def shutdown(self) -> None:
        if self._model is not None:
            logger.debug("Shutting down embedding model")
            self._model = None
        logger.debug("Embedding model shutdown complete")
