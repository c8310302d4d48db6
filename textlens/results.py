#!/usr/bin/env python3
"""
Recognition Results Module

Result types shared by every backend, the canonical confidence scale, and
plain-text export of recognized text.
"""

import math
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Tuple, Union, Dict, Any


def normalize_confidence(value: Optional[float], scale: float = 1.0) -> float:
    """
    Map an engine confidence onto the canonical [0, 1] scale.

    Args:
        value: Native confidence value (None or NaN count as no confidence)
        scale: The engine's maximum, e.g. 100 for Tesseract

    Returns:
        Confidence clamped to [0, 1]
    """
    if value is None:
        return 0.0
    value = float(value)
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value / scale))


@dataclass(frozen=True)
class TextBox:
    """A recognized word or line region in pixel coordinates."""

    text: str
    confidence: float
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class RecognitionResult:
    """
    Outcome of one successful recognition.

    Attributes:
        text: Recognized text, empty when nothing was detected
        confidence: Engine certainty on the [0, 1] scale
        elapsed_ms: Recognition wall-clock time in milliseconds
        engine: Name of the backend that produced the result
        boxes: Word or line regions, when the engine reports them
    """

    text: str
    confidence: float
    elapsed_ms: Optional[float] = None
    engine: str = ""
    boxes: Tuple[TextBox, ...] = field(default_factory=tuple)

    def stats(self) -> Dict[str, int]:
        lines = self.text.splitlines()
        return {
            'characters': len(self.text),
            'lines': len(lines),
            'non_empty_lines': sum(1 for line in lines if line.strip()),
            'regions': len(self.boxes),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['boxes'] = [asdict(box) for box in self.boxes]
        data['stats'] = self.stats()
        return data


def format_text(text: str, preserve_whitespace: bool = True) -> str:
    """Return text as-is, or with lines trimmed and blank lines removed."""
    if preserve_whitespace:
        return text
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def export_text(result: RecognitionResult, path: Union[str, Path],
                preserve_whitespace: bool = True) -> Path:
    """
    Write recognized text to a UTF-8 text file.

    Args:
        result: Result to export
        path: Destination file, parent directories are created
        preserve_whitespace: Keep the engine's layout; when False lines are
            trimmed and blank lines dropped

    Returns:
        The written path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_text(result.text, preserve_whitespace), encoding='utf-8')
    return path
