"""
Local Embeddings Engine for Semantic Search

Turns short catalog text into unit-length vectors. Uses a pretrained
word-vector table when one is available and falls back to a hashed
character n-gram histogram otherwise, so ``embed`` never fails for
non-empty input.

Features:
- Average pooling of pretrained word vectors
- Character n-gram fallback with a process-stable hash
- Cosine similarity mapped onto [0, 1]
- Byte codec for vector storage

Usage:
    from stocksearch.search.embeddings import EmbeddingEngine, WordVectorTable

    engine = EmbeddingEngine(word_vectors=WordVectorTable.load("glove.6B.100d.txt"))
    vec = engine.embed("bolt m6 zinc plated")
    ranked = engine.top_similar(vec, candidates, k=5)
"""

import hashlib
import logging
import re
from collections import Counter
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

# Vectors are stored as little-endian float64 regardless of platform.
VECTOR_DTYPE = np.dtype('<f8')

FALLBACK_MAX_BUCKETS = 100

_TOKEN_RE = re.compile(r'\w+', re.UNICODE)


def tokenize(text: str) -> List[str]:
    """Lowercase and split text into word tokens."""
    return _TOKEN_RE.findall(text.lower())


# =============================================================================
# Vector Helpers
# =============================================================================

def is_valid_vector(vector) -> bool:
    """A vector is valid when it is non-empty and every component is finite."""
    if vector is None:
        return False
    arr = np.asarray(vector, dtype=np.float64)
    return arr.ndim == 1 and arr.size > 0 and bool(np.all(np.isfinite(arr)))


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Scale to unit Euclidean length. Zero vectors are returned unchanged."""
    magnitude = np.linalg.norm(vector)
    if magnitude == 0:
        return vector
    return vector / magnitude


def vector_to_bytes(vector) -> bytes:
    """Serialize a vector for storage."""
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def vector_from_bytes(data: bytes) -> Optional[np.ndarray]:
    """
    Deserialize a stored vector.

    Returns None when the byte length is not a whole number of components.
    """
    if not data or len(data) % VECTOR_DTYPE.itemsize != 0:
        return None
    return np.frombuffer(data, dtype=VECTOR_DTYPE).astype(np.float64)


# =============================================================================
# Pretrained Word Vectors
# =============================================================================

class WordVectorTable:
    """
    Immutable snapshot of pretrained word vectors.

    The matrix is marked read-only and the word index is a read-only
    mapping, so one table can be shared by any number of engines and
    threads.
    """

    def __init__(self, words: Sequence[str], vectors):
        matrix = np.array(vectors, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != len(words):
            raise ValueError(
                f"Expected one vector per word, got {matrix.shape} for {len(words)} words"
            )
        if matrix.shape[1] == 0:
            raise ValueError("Word vectors must have at least one dimension")

        matrix.setflags(write=False)
        self._vectors = matrix
        self._index = MappingProxyType({word: i for i, word in enumerate(words)})

    @property
    def dimension(self) -> int:
        return self._vectors.shape[1]

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, word: str) -> bool:
        return word in self._index

    def get(self, word: str) -> Optional[np.ndarray]:
        """Vector for ``word`` or None."""
        idx = self._index.get(word)
        if idx is None:
            return None
        return self._vectors[idx]

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'WordVectorTable':
        """
        Load a table from disk.

        Supported formats:
        - ``.npz`` with ``words`` and ``vectors`` arrays
        - GloVe / word2vec text: ``word v1 v2 ... vD`` per line, with an
          optional ``count dimension`` header line

        Words are lowercased to match the tokenizer.
        """
        path = Path(path)

        if path.suffix == '.npz':
            with np.load(path, allow_pickle=False) as data:
                words = [str(w).lower() for w in data['words']]
                vectors = data['vectors']
            table = cls(words, vectors)
        else:
            table = cls._load_text(path)

        logger.info(
            f"Loaded {len(table)} word vectors (dimension {table.dimension}) from {path}",
            extra={'path': str(path), 'words': len(table), 'dimension': table.dimension}
        )
        return table

    @classmethod
    def _load_text(cls, path: Path) -> 'WordVectorTable':
        words: List[str] = []
        rows: List[List[float]] = []
        seen = set()

        with open(path, encoding='utf-8') as f:
            for line_no, line in enumerate(f):
                parts = line.rstrip().split(' ')
                if len(parts) < 2:
                    continue
                # word2vec header: "<count> <dimension>"
                if line_no == 0 and len(parts) == 2 and all(p.isdigit() for p in parts):
                    continue

                word = parts[0].lower()
                if word in seen:
                    continue
                if rows and len(parts) - 1 != len(rows[0]):
                    raise ValueError(f"Inconsistent dimension on line {line_no + 1} of {path}")

                seen.add(word)
                words.append(word)
                rows.append([float(x) for x in parts[1:]])

        if not rows:
            raise ValueError(f"No word vectors found in {path}")

        return cls(words, rows)


# =============================================================================
# Embedding Engine
# =============================================================================

class EmbeddingEngine:
    """
    Generate embeddings for semantic search.

    With a word-vector table, text is tokenized, each known token is looked
    up and the vectors are averaged. Without a table, or when no token is
    known, a character n-gram histogram is used instead. Every returned
    vector is L2-normalized.
    """

    def __init__(
        self,
        max_dimension: int = 300,
        word_vectors: Optional[Union[WordVectorTable, str, Path]] = None
    ):
        """
        Initialize the embedding engine.

        Args:
            max_dimension: Upper bound for the fallback embedding width
                           (the fallback uses min(max_dimension, 100) buckets)
            word_vectors: A loaded WordVectorTable or a path to load one from.
                          An unreadable path leaves the engine on the fallback.
        """
        if max_dimension < 1:
            raise ValueError("max_dimension must be positive")

        self.max_dimension = max_dimension
        self.word_vectors = self._load_table(word_vectors)

    @staticmethod
    def _load_table(word_vectors) -> Optional[WordVectorTable]:
        if word_vectors is None or isinstance(word_vectors, WordVectorTable):
            return word_vectors

        try:
            return WordVectorTable.load(word_vectors)
        except (OSError, ValueError, KeyError) as e:
            logger.warning(
                f"Word vectors not available ({e}). Semantic search will use n-gram embeddings.",
                extra={'path': str(word_vectors)}
            )
            return None

    @property
    def fallback_dimension(self) -> int:
        return min(self.max_dimension, FALLBACK_MAX_BUCKETS)

    @property
    def dimension(self) -> int:
        """Dimension of primary-path embeddings."""
        if self.word_vectors is not None:
            return self.word_vectors.dimension
        return self.fallback_dimension

    def embed(self, text: Optional[str]) -> Optional[np.ndarray]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            Unit vector, or None for empty / whitespace-only text
        """
        if text is None or not text.strip():
            return None

        if self.word_vectors is not None:
            vector = self._embed_words(text)
            if vector is not None:
                return vector

        return self._fallback_embed(text)

    def embed_batch(self, texts: Iterable[Optional[str]]) -> List[Optional[np.ndarray]]:
        """Embed multiple texts; entries line up with the input."""
        return [self.embed(text) for text in texts]

    def _embed_words(self, text: str) -> Optional[np.ndarray]:
        """Average-pool known word vectors. None when nothing resolves."""
        vectors = [v for v in (self.word_vectors.get(tok) for tok in tokenize(text)) if v is not None]
        if not vectors:
            return None

        pooled = np.mean(np.vstack(vectors), axis=0)
        if not np.all(np.isfinite(pooled)) or np.linalg.norm(pooled) == 0:
            return None

        return l2_normalize(pooled)

    def _fallback_embed(self, text: str) -> np.ndarray:
        """Hashed histogram of character unigrams, bigrams and trigrams."""
        cleaned = text.lower().strip()

        features: Counter = Counter()
        for n in (1, 2, 3):
            for i in range(len(cleaned) - n + 1):
                features[cleaned[i:i + n]] += 1

        vector = np.zeros(self.fallback_dimension, dtype=np.float64)
        for feature, count in features.items():
            vector[self._bucket(feature, vector.size)] += count

        return l2_normalize(vector)

    @staticmethod
    def _bucket(feature: str, size: int) -> int:
        # Python's hash() is salted per process; stored vectors must not be.
        digest = hashlib.md5(feature.encode('utf-8')).digest()
        return int.from_bytes(digest[:8], 'little') % size

    # =========================================================================
    # Similarity
    # =========================================================================

    @staticmethod
    def cosine_similarity(vec1, vec2) -> float:
        """
        Cosine similarity of two unit vectors mapped onto [0, 1].

        Dot products of unit vectors lie in [-1, 1]; (dot + 1) / 2 maps them
        to [0, 1]. Vectors of different dimension score 0.0.
        """
        a = np.asarray(vec1, dtype=np.float64)
        b = np.asarray(vec2, dtype=np.float64)
        if a.shape != b.shape or a.size == 0:
            return 0.0

        score = (float(np.dot(a, b)) + 1.0) / 2.0
        return min(1.0, max(0.0, score))

    def top_similar(
        self,
        query,
        candidates: Sequence,
        k: int = 10
    ) -> List[Tuple[int, float]]:
        """
        Find the most similar candidates.

        Returns:
            Up to k (index, score) tuples, score descending. Equal scores
            keep candidate order (lower index first).
        """
        if k <= 0:
            return []

        scored = [(i, self.cosine_similarity(query, c)) for i, c in enumerate(candidates)]
        scored.sort(key=lambda pair: -pair[1])
        return scored[:k]
