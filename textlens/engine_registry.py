#!/usr/bin/env python3
"""
Engine Registry Module

Builds the set of recognition backends enabled by configuration and installed
on this machine, and picks the active one. The selection is made once at
startup and is read-only afterwards.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .config import EngineConfig
from .exceptions import EngineUnavailableError
from .ocr_engine import (
    EngineKind, RecognitionBackend, TesseractBackend, EasyOCRBackend, backend_available
)

logger = logging.getLogger(__name__)

# The learned model is preferred over tesseract when both are installed
DEFAULT_ENGINE_ORDER = (EngineKind.EASYOCR, EngineKind.TESSERACT)


class EngineRegistry:
    """
    Registry of constructed backends with a single active engine.

    Args:
        backends: Constructed backends keyed by kind
        preferred: Engine to use when it is registered
        fallback_order: Order tried when the preferred engine is missing

    Raises:
        EngineUnavailableError: If no backend is registered
    """

    def __init__(self,
                 backends: Dict[EngineKind, RecognitionBackend],
                 preferred: Optional[EngineKind] = None,
                 fallback_order: Sequence[EngineKind] = DEFAULT_ENGINE_ORDER):
        if not backends:
            raise EngineUnavailableError([kind.value for kind in fallback_order])

        self._backends = dict(backends)
        self._order = self._selection_order(preferred, fallback_order)
        self._active_kind = next(kind for kind in self._order if kind in self._backends)

        if preferred is not None and preferred is not self._active_kind:
            logger.warning(
                f"Preferred engine {preferred.value} is unavailable, "
                f"falling back to {self._active_kind.value}"
            )
        logger.info(f"Active OCR engine: {self._active_kind.value}")

    def _selection_order(self, preferred: Optional[EngineKind],
                         fallback_order: Iterable[EngineKind]) -> List[EngineKind]:
        order = [preferred] if preferred is not None else []
        for kind in list(fallback_order) + list(self._backends):
            if kind not in order:
                order.append(kind)
        return order

    @property
    def active_kind(self) -> EngineKind:
        return self._active_kind

    def active_engine(self) -> RecognitionBackend:
        return self._backends[self._active_kind]

    def is_available(self, kind: EngineKind) -> bool:
        return kind in self._backends

    def available_engines(self) -> List[EngineKind]:
        """Registered engines in selection order."""
        return [kind for kind in self._order if kind in self._backends]

    def get(self, kind: EngineKind) -> RecognitionBackend:
        try:
            return self._backends[kind]
        except KeyError:
            raise EngineUnavailableError([kind.value]) from None


def create_backend(kind: EngineKind, config: EngineConfig) -> RecognitionBackend:
    """
    Construct one backend from configuration.

    Raises:
        EngineUnavailableError: If the backend's library is not installed
        EngineInitError: If the backend is installed but cannot load its model
    """
    if kind is EngineKind.TESSERACT:
        return TesseractBackend(
            languages=config.languages,
            tesseract_config=config.tesseract_config,
            timeout=config.tesseract_timeout,
        )
    if kind is EngineKind.EASYOCR:
        return EasyOCRBackend(
            languages=config.languages,
            model_dir=config.model_dir,
            use_gpu=config.use_gpu,
            download_enabled=config.download_models,
        )
    raise ValueError(f"Unknown OCR engine: {kind}")


def build_registry(config: Optional[EngineConfig] = None) -> EngineRegistry:
    """
    Construct every enabled and installed backend and select the active one.

    Engines that are not installed are skipped with a warning. Engines that
    are installed but fail to load abort startup with EngineInitError.

    Raises:
        EngineUnavailableError: If no enabled engine is installed
        EngineInitError: If an installed engine fails to initialize
    """
    config = config or EngineConfig()
    backends: Dict[EngineKind, RecognitionBackend] = {}
    tried: List[str] = []

    for kind in config.engines:
        tried.append(kind.value)
        if not backend_available(kind):
            logger.warning(f"OCR engine {kind.value} is not installed, skipping")
            continue
        backends[kind] = create_backend(kind, config)

    if not backends:
        raise EngineUnavailableError(tried)

    return EngineRegistry(backends, preferred=config.preferred_engine, fallback_order=config.engines)
