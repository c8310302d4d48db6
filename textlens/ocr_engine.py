#!/usr/bin/env python3
"""
OCR Engine Module

This module defines the recognition backend contract and its two variants:
TesseractBackend, which drives the tesseract binary through pytesseract, and
EasyOCRBackend, which runs a learned model loaded once at startup. Both report
confidence on the canonical [0, 1] scale.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np

try:
    import pytesseract
    PYTESSERACT_AVAILABLE = True
except ImportError:
    PYTESSERACT_AVAILABLE = False
    logging.warning("pytesseract not installed. The tesseract engine will be unavailable.")

try:
    import easyocr
    EASYOCR_AVAILABLE = True
except ImportError:
    EASYOCR_AVAILABLE = False
    logging.info("EasyOCR not installed. Install with: pip install 'textlens[easyocr]'")

from .exceptions import (
    OCRError, EngineUnavailableError, EngineInitError, RecognitionError
)
from .image_source import ImageBuffer
from .results import RecognitionResult, TextBox, normalize_confidence

logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = Path.home() / ".textlens" / "models"
DEFAULT_TESSERACT_CONFIG = '--oem 3 --psm 6'

# EasyOCR language codes mapped to tesseract traineddata names
TESSERACT_LANGUAGES = {
    'en': 'eng',
    'ch_sim': 'chi_sim',
    'ch_tra': 'chi_tra',
    'ja': 'jpn',
    'ko': 'kor',
    'fr': 'fra',
    'de': 'deu',
    'es': 'spa',
    'it': 'ita',
    'pt': 'por',
    'ru': 'rus',
}


class EngineKind(Enum):
    """Closed set of recognition backends."""

    TESSERACT = "tesseract"
    EASYOCR = "easyocr"

    @classmethod
    def parse(cls, name: Union[str, "EngineKind"]) -> "EngineKind":
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            choices = ', '.join(kind.value for kind in cls)
            raise ValueError(f"Unknown OCR engine {name!r}. Choose one of: {choices}") from None


class RecognitionBackend(ABC):
    """
    Contract shared by every recognition backend.

    Subclasses implement recognize(). Callers go through run(), which times the
    call, clamps confidence into [0, 1] and turns unexpected exceptions into
    RecognitionError. Backends marked reentrant = False are serialized.
    """

    kind: EngineKind
    reentrant = True

    def __init__(self):
        self._call_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    def recognize(self, image: ImageBuffer) -> RecognitionResult:
        """
        Recognize text in a decoded image.

        Args:
            image: Read-only image buffer

        Returns:
            Recognition result, with empty text when nothing was found

        Raises:
            RecognitionError: If the engine fails on this input
        """

    def run(self, image: ImageBuffer) -> RecognitionResult:
        source = str(image.source) if image.source else None
        start = time.perf_counter()
        try:
            if self.reentrant:
                result = self.recognize(image)
            else:
                with self._call_lock:
                    result = self.recognize(image)
        except OCRError:
            raise
        except Exception as e:
            logger.error(f"{self.name} failed with unexpected error: {e}")
            raise RecognitionError(engine_name=self.name, file_path=source, original_error=e) from e

        if not isinstance(result, RecognitionResult):
            raise RecognitionError(
                engine_name=self.name,
                file_path=source,
                original_error=TypeError(f"backend returned {type(result).__name__}")
            )

        elapsed_ms = result.elapsed_ms
        if elapsed_ms is None:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
        return replace(
            result,
            confidence=normalize_confidence(result.confidence),
            elapsed_ms=elapsed_ms,
            engine=result.engine or self.name,
        )


def tesseract_available() -> bool:
    """Check that pytesseract is installed and the tesseract binary can be found."""
    if not PYTESSERACT_AVAILABLE:
        return False
    try:
        pytesseract.get_tesseract_version()
    except pytesseract.TesseractNotFoundError:
        return False
    return True


class TesseractBackend(RecognitionBackend):
    """Traditional OCR engine backed by the tesseract binary."""

    kind = EngineKind.TESSERACT

    def __init__(self,
                 languages: Optional[List[str]] = None,
                 tesseract_config: str = DEFAULT_TESSERACT_CONFIG,
                 timeout: float = 0):
        """
        Initialize the tesseract backend.

        Args:
            languages: Language codes, EasyOCR style ('en') or tesseract style ('eng')
            tesseract_config: Extra command line flags for tesseract
            timeout: Seconds before a call is aborted, 0 for no timeout

        Raises:
            EngineUnavailableError: If pytesseract or the tesseract binary is missing
        """
        super().__init__()
        if not tesseract_available():
            raise EngineUnavailableError([self.kind.value])
        self.languages = languages or ['en']
        self.lang = '+'.join(TESSERACT_LANGUAGES.get(code, code) for code in self.languages)
        self.tesseract_config = tesseract_config
        self.timeout = timeout
        logger.info(f"Tesseract initialized with languages: {self.lang}")

    def recognize(self, image: ImageBuffer) -> RecognitionResult:
        pil_image = image.to_pil()
        try:
            text = pytesseract.image_to_string(
                pil_image, lang=self.lang, config=self.tesseract_config, timeout=self.timeout
            )
            data = pytesseract.image_to_data(
                pil_image, lang=self.lang, config=self.tesseract_config,
                output_type=pytesseract.Output.DICT, timeout=self.timeout
            )
        except (pytesseract.TesseractError, RuntimeError) as e:
            # pytesseract signals timeouts with a bare RuntimeError
            raise RecognitionError(
                engine_name=self.name,
                file_path=str(image.source) if image.source else None,
                original_error=e,
                details={'suggestion': "Ensure tesseract language data is installed for: " + self.lang}
            ) from e

        boxes = self._word_boxes(data)
        text = text.strip()
        if not text or not boxes:
            return RecognitionResult(text=text, confidence=0.0, engine=self.name, boxes=tuple(boxes))

        mean_conf = sum(box.confidence for box in boxes) / len(boxes)
        return RecognitionResult(
            text=text,
            confidence=mean_conf,
            engine=self.name,
            boxes=tuple(boxes),
        )

    @staticmethod
    def _word_boxes(data: dict) -> List[TextBox]:
        boxes = []
        for idx, raw_text in enumerate(data.get('text', [])):
            word = (raw_text or '').strip()
            if not word:
                continue
            try:
                conf = float(data['conf'][idx])
            except (KeyError, IndexError, TypeError, ValueError):
                continue
            if conf < 0:
                continue
            boxes.append(TextBox(
                text=word,
                confidence=normalize_confidence(conf, scale=100.0),
                x=int(data['left'][idx]),
                y=int(data['top'][idx]),
                width=int(data['width'][idx]),
                height=int(data['height'][idx]),
            ))
        return boxes


class EasyOCRBackend(RecognitionBackend):
    """
    Learned-model OCR engine backed by EasyOCR.

    The reader is loaded once from model_dir and then only read, so concurrent
    calls share it without locking.
    """

    kind = EngineKind.EASYOCR

    def __init__(self,
                 languages: Optional[List[str]] = None,
                 model_dir: Optional[Union[str, Path]] = None,
                 use_gpu: bool = False,
                 download_enabled: bool = False,
                 reader=None):
        """
        Initialize the EasyOCR backend and load its model.

        Args:
            languages: List of language codes (e.g., ['en', 'ch_sim'])
            model_dir: Directory holding the detection and recognition models
            use_gpu: Whether to use GPU acceleration
            download_enabled: Allow EasyOCR to fetch missing models
            reader: Preloaded reader object, skips model loading

        Raises:
            EngineUnavailableError: If EasyOCR is not installed
            EngineInitError: If the model directory or model files are missing or corrupt
        """
        super().__init__()
        self.languages = languages or ['en']
        self.model_dir = Path(model_dir or DEFAULT_MODEL_DIR).expanduser()
        self.use_gpu = use_gpu
        self.download_enabled = download_enabled
        self._reader = reader if reader is not None else self._load_reader()

    def _load_reader(self):
        if not EASYOCR_AVAILABLE:
            raise EngineUnavailableError([self.kind.value])
        if not self.download_enabled and not self.model_dir.is_dir():
            raise EngineInitError(
                self.kind.value,
                FileNotFoundError(f"Model directory not found: {self.model_dir}")
            )

        try:
            self.model_dir.mkdir(parents=True, exist_ok=True)
            reader = easyocr.Reader(
                self.languages,
                gpu=self.use_gpu,
                model_storage_directory=str(self.model_dir),
                download_enabled=self.download_enabled,
                verbose=False
            )
        except Exception as e:
            raise EngineInitError(self.kind.value, e) from e

        logger.info(f"EasyOCR initialized with languages: {self.languages} from {self.model_dir}")
        return reader

    @staticmethod
    def _to_rgb(image: ImageBuffer) -> np.ndarray:
        if image.mode == 'L':
            return cv2.cvtColor(image.pixels, cv2.COLOR_GRAY2RGB)
        if image.mode == 'RGBA':
            return cv2.cvtColor(image.pixels, cv2.COLOR_RGBA2RGB)
        return np.array(image.pixels, copy=True)

    def recognize(self, image: ImageBuffer) -> RecognitionResult:
        rgb_image = self._to_rgb(image)
        try:
            detections = self._reader.readtext(rgb_image, detail=1)
        except Exception as e:
            raise RecognitionError(
                engine_name=self.name,
                file_path=str(image.source) if image.source else None,
                original_error=e
            ) from e

        lines = []
        boxes = []
        for detection in detections:
            if len(detection) < 3:
                continue
            points, text, prob = detection[0], str(detection[1]).strip(), detection[2]
            if not text:
                continue
            lines.append(text)
            boxes.append(self._to_box(points, text, normalize_confidence(prob)))

        if not boxes:
            return RecognitionResult(text="", confidence=0.0, engine=self.name)

        return RecognitionResult(
            text="\n".join(lines),
            confidence=sum(box.confidence for box in boxes) / len(boxes),
            engine=self.name,
            boxes=tuple(boxes),
        )

    @staticmethod
    def _to_box(points, text: str, confidence: float) -> TextBox:
        xs = [float(point[0]) for point in points]
        ys = [float(point[1]) for point in points]
        left, top = int(min(xs)), int(min(ys))
        return TextBox(
            text=text,
            confidence=confidence,
            x=left,
            y=top,
            width=int(max(xs)) - left,
            height=int(max(ys)) - top,
        )


BACKEND_TYPES = {
    EngineKind.TESSERACT: TesseractBackend,
    EngineKind.EASYOCR: EasyOCRBackend,
}


def backend_available(kind: EngineKind) -> bool:
    """
    Check whether a backend's library is installed.

    Returns:
        True if the backend can be constructed on this machine
    """
    if kind is EngineKind.TESSERACT:
        return tesseract_available()
    if kind is EngineKind.EASYOCR:
        return EASYOCR_AVAILABLE
    return False


def get_available_engines() -> List[str]:
    """
    Get list of installed OCR engines.

    Returns:
        List of available engine names
    """
    return [kind.value for kind in EngineKind if backend_available(kind)]
