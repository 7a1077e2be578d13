"""Versioned inputs for the canonical schema document."""

import os
import logging
from typing import Tuple, Optional

from schema_sync.domain.repositories.interfaces import IReferenceSource

logger = logging.getLogger(__name__)


class FileReferenceSource(IReferenceSource):
    """
    Reads the reference schema from a SQL file.
    The version tag defaults to the file name when none is configured.
    """

    def __init__(self, path: str, version: Optional[str] = None, encoding: str = "utf-8"):
        self._path = path
        self._version = version
        self._encoding = encoding

    def read(self) -> Tuple[str, str]:
        with open(self._path, "r", encoding=self._encoding) as handle:
            text = handle.read()
        version = self._version or os.path.basename(self._path)
        logger.debug(f"[FileReferenceSource] Read {len(text)} characters from {self._path}")
        return text, version


class StaticReferenceSource(IReferenceSource):
    """In-memory reference text (tests, request overrides)."""

    def __init__(self, text: str, version: str = "inline"):
        self._text = text
        self._version = version

    def read(self) -> Tuple[str, str]:
        return self._text, self._version
