"""
Streaming file hashing for duplicate detection.
"""

import hashlib
import logging
from pathlib import Path
from typing import Iterable, Literal

logger = logging.getLogger(__name__)

HashAlgorithm = Literal["md5", "sha256"]

CHUNK_SIZE = 64 * 1024


class FileHasher:
    """
    Hash file contents in fixed-size chunks.

    Files are never read whole, so memory use stays bounded by
    chunk_size regardless of file size.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    def md5(self, path: Path) -> str:
        return self.hash(path, "md5")

    def sha256(self, path: Path) -> str:
        return self.hash(path, "sha256")

    def hash(self, path: Path, algorithm: HashAlgorithm = "md5") -> str:
        """
        Hash a file.

        Args:
            path: File to hash
            algorithm: 'md5' or 'sha256'

        Returns:
            Hex digest

        Raises:
            OSError: If the file cannot be read
        """
        digest = hashlib.new(algorithm)
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(self.chunk_size), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def hash_batch(
        self, paths: Iterable[Path], algorithm: HashAlgorithm = "md5"
    ) -> dict[Path, str]:
        """Hash several files, skipping any that cannot be read."""
        results = {}
        for path in paths:
            try:
                results[path] = self.hash(path, algorithm)
            except OSError as e:
                logger.debug(f"Skipping unhashable file {path}: {e}")
        return results
