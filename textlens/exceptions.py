#!/usr/bin/env python3
"""
OCR Exceptions Module

This module defines the exception classes raised by image decoding, engine
startup and recognition. Every error carries a human-readable message and a
details dict so the CLI and GUI can show a cause and a suggestion.
"""

from typing import Optional, List


class OCRError(Exception):
    """Base exception class for OCR-related errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def suggestion(self) -> Optional[str]:
        return self.details.get('suggestion')


class ImageDecodeError(OCRError):
    """Raised when an image file is unsupported or cannot be decoded."""

    def __init__(self, file_path: Optional[str] = None, operation: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        message = "Unsupported or corrupt image."
        if operation:
            message += f" Operation: {operation}"
        if file_path:
            message += f" File: {file_path}"

        details = {
            'file_path': file_path,
            'operation': operation,
            'original_error': str(original_error) if original_error else None,
            'suggestion': "Ensure the image file is valid and in a supported format "
                          "(PNG, JPG, BMP, TIFF, WebP, GIF)."
        }
        super().__init__(message, details)


class EngineUnavailableError(OCRError):
    """Raised when no recognition backend is installed or enabled."""

    def __init__(self, engines_tried: Optional[List[str]] = None):
        message = "No OCR engines available for processing."
        if engines_tried:
            message += f" Tried: {', '.join(engines_tried)}"
        details = {
            'engines_tried': engines_tried or [],
            'suggestion': "Install at least one OCR engine: pip install 'textlens[easyocr]' "
                          "or install the tesseract binary."
        }
        super().__init__(message, details)


class EngineInitError(OCRError):
    """Raised when a backend is installed but fails to start (missing or corrupt model)."""

    def __init__(self, engine_name: str, original_error: Optional[Exception] = None):
        message = f"Failed to initialize {engine_name} OCR engine."
        if original_error:
            message += f" Cause: {original_error}"
        details = {
            'engine': engine_name,
            'original_error': str(original_error) if original_error else None,
            'suggestion': f"Check the {engine_name} model files and installation."
        }
        super().__init__(message, details)


class RecognitionError(OCRError):
    """Raised when a backend fails while recognizing a single image."""

    def __init__(self, engine_name: Optional[str] = None, file_path: Optional[str] = None,
                 original_error: Optional[Exception] = None, message: Optional[str] = None,
                 details: Optional[dict] = None):
        if message is None:
            message = "OCR processing failed."
            if file_path:
                message += f" File: {file_path}"
            if engine_name:
                message += f" Engine: {engine_name}"
            if original_error:
                message += f" Cause: {original_error}"

        merged = {
            'file_path': file_path,
            'engine': engine_name,
            'original_error': str(original_error) if original_error else None,
            'suggestion': "Try again with the same or a different image."
        }
        merged.update(details or {})
        super().__init__(message, merged)
        self.original_error = original_error


class MemoryLimitError(RecognitionError):
    """Raised when the process exceeds the configured memory limit."""

    def __init__(self, operation: str, memory_used: Optional[int] = None,
                 memory_limit: Optional[int] = None):
        details = {
            'operation': operation,
            'memory_used': memory_used,
            'memory_limit': memory_limit,
            'suggestion': "Try a smaller image or increase memory_limit_mb."
        }
        super().__init__(message=f"Memory limit exceeded during {operation}.", details=details)


class SupersededError(OCRError):
    """Raised by Dispatcher.wait when a newer request replaced the one waited on."""

    def __init__(self, request_id: int):
        details = {'request_id': request_id}
        super().__init__(f"Request {request_id} was superseded by a newer request.", details)
        self.request_id = request_id
