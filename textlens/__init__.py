"""
TextLens Package

Pluggable OCR backends behind one recognition contract, an engine registry
that picks the active backend at startup, and a dispatcher that runs
recognition off the interactive thread.
"""

__version__ = "1.0.0"

from .dispatcher import Delivery, Dispatcher, RequestHandle, RequestState
from .engine_registry import EngineRegistry, build_registry
from .image_source import ImageBuffer, load_image
from .ocr_engine import EngineKind, RecognitionBackend, get_available_engines
from .results import RecognitionResult, TextBox, export_text

__all__ = [
    "Delivery",
    "Dispatcher",
    "EngineKind",
    "EngineRegistry",
    "ImageBuffer",
    "RecognitionBackend",
    "RecognitionResult",
    "RequestHandle",
    "RequestState",
    "TextBox",
    "build_registry",
    "export_text",
    "get_available_engines",
    "load_image",
]
