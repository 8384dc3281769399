# core/feature_store.py

from collections import OrderedDict
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional
import logging
import math
import threading

import numpy as np
from tqdm import tqdm

from core.exceptions import (
    CorruptRecordError,
    InputValidationError,
    ModelNotFoundError,
    QueryNotFoundError,
)
from utils.file_utils import base_name, get_record_files, strip_extension

logger = logging.getLogger(__name__)

FeatureMapping = Mapping[str, np.ndarray]


def parse_record(text: str, source: str = "<record>") -> np.ndarray:
    """
    Parse one feature record into a read-only vector

    A record holds one decimal number per line. Records are written with a
    terminating newline, so the final field is an artifact of that
    delimiter and is always discarded before parsing.

    Raises:
        CorruptRecordError: no numbers left after the drop, or a field
            that is not a finite decimal number
    """
    fields = text.split('\n')
    dropped = fields.pop()
    if dropped.strip():
        logger.warning(f"{source}: discarding non-empty trailing field {dropped.strip()!r}")

    if not fields:
        raise CorruptRecordError(f"{source}: record holds no numeric tokens")

    values = []
    for line_no, raw in enumerate(fields, 1):
        token = raw.strip()
        try:
            value = float(token)
        except ValueError:
            raise CorruptRecordError(
                f"{source}:{line_no}: not a number: {token!r}"
            ) from None
        if not math.isfinite(value):
            raise CorruptRecordError(f"{source}:{line_no}: non-finite value {token!r}")
        values.append(value)

    vector = np.array(values, dtype=np.float64)
    vector.setflags(write=False)
    return vector


class FeatureStore:
    """
    Loads precomputed feature vectors for a model from the index directory

    Layout: ``<index_root>/<model>/<image stem>.<ext>``, one record per
    image. Keys are ``<image_namespace>/<image stem><image_extension>``.
    """

    def __init__(self, index_root: str = "data/index",
                 image_namespace: str = "image",
                 image_extension: str = ".jpg",
                 show_progress: bool = False):
        self.index_root = Path(index_root)
        self.image_namespace = image_namespace.strip('/')
        self.image_extension = image_extension if image_extension.startswith('.') \
            else f".{image_extension}"
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config) -> 'FeatureStore':
        """Build from a FeatureStoreConfig"""
        return cls(index_root=config.index_root,
                   image_namespace=config.image_namespace,
                   image_extension=config.image_extension,
                   show_progress=config.show_progress)

    def make_key(self, stem: str) -> str:
        """Canonical store key for an image stem"""
        return f"{self.image_namespace}/{stem}{self.image_extension}"

    def available_models(self) -> List[str]:
        """Names of model directories that hold at least one record"""
        if not self.index_root.is_dir():
            return []
        return sorted(
            d.name for d in self.index_root.iterdir()
            if d.is_dir() and get_record_files(str(d))
        )

    def load(self, model_name: str) -> FeatureMapping:
        """
        Load every feature vector of a model

        Args:
            model_name: Feature-extraction model directory name

        Returns:
            Read-only mapping from image key to feature vector
        """
        if not model_name or base_name(model_name) != model_name or model_name in ('.', '..'):
            raise InputValidationError(f"Invalid model name: {model_name!r}")

        model_dir = self.index_root / model_name
        record_files = get_record_files(str(model_dir))
        if not record_files:
            raise ModelNotFoundError(f"No feature records for model '{model_name}' in {model_dir}")

        features = {}
        dimension = None
        for record_file in tqdm(record_files, desc=f"Loading {model_name}",
                                disable=not self.show_progress):
            try:
                text = record_file.read_text(encoding='utf-8')
            except (UnicodeDecodeError, OSError) as e:
                raise CorruptRecordError(f"{record_file}: unreadable record: {e}") from e
            vector = parse_record(text, source=str(record_file))

            if dimension is None:
                dimension = vector.size
            elif vector.size != dimension:
                raise CorruptRecordError(
                    f"{record_file}: dimension {vector.size} differs from "
                    f"model dimension {dimension}"
                )

            key = self.make_key(record_file.stem)
            if key in features:
                raise CorruptRecordError(f"{record_file}: duplicate image key {key}")
            features[key] = vector

        logger.info(f"Loaded {len(features)} vectors of dimension {dimension} for {model_name}")
        return MappingProxyType(features)

    def resolve_key(self, raw_name: str) -> str:
        """Reduce a file name or identifier to its canonical store key"""
        if not isinstance(raw_name, str) or not raw_name.strip():
            raise InputValidationError("Query image name is empty")
        return self.make_key(strip_extension(base_name(raw_name)))

    def resolve_query(self, raw_name: str, store: FeatureMapping) -> np.ndarray:
        """
        Look up the stored vector of a query image

        Only images that belong to the database can be queried; there is no
        path for out-of-database images.

        Raises:
            QueryNotFoundError: if the resolved key is not in the store
        """
        key = self.resolve_key(raw_name)
        try:
            return store[key]
        except KeyError:
            raise QueryNotFoundError(f"Query image {raw_name!r} ({key}) is not in the store") from None


class CachedFeatureStore:
    """
    Read-through LRU cache of loaded model stores

    Loaded stores are immutable, so they are shared between callers as-is.
    Entries are only dropped by eviction or by invalidate().
    """

    def __init__(self, store: FeatureStore, cache_size: int = 5):
        if cache_size < 1:
            raise ValueError("cache_size must be at least 1")
        self.store = store
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, FeatureMapping]" = OrderedDict()
        self._lock = threading.Lock()

    def load(self, model_name: str) -> FeatureMapping:
        with self._lock:
            if model_name in self._cache:
                self._cache.move_to_end(model_name)
                return self._cache[model_name]

        features = self.store.load(model_name)

        with self._lock:
            self._cache[model_name] = features
            self._cache.move_to_end(model_name)
            while len(self._cache) > self.cache_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug(f"Evicted cached store for {evicted}")
        return features

    def resolve_query(self, raw_name: str, store: FeatureMapping) -> np.ndarray:
        return self.store.resolve_query(raw_name, store)

    def resolve_key(self, raw_name: str) -> str:
        return self.store.resolve_key(raw_name)

    def available_models(self) -> List[str]:
        return self.store.available_models()

    def invalidate(self, model_name: Optional[str] = None):
        """Drop one cached model, or all of them"""
        with self._lock:
            if model_name is None:
                self._cache.clear()
            else:
                self._cache.pop(model_name, None)

    def __contains__(self, model_name: str) -> bool:
        with self._lock:
            return model_name in self._cache
