#!/usr/bin/env python3
"""
Configuration Module

Engine selection and backend options loaded from a YAML file. Values missing
from the file fall back to the EngineConfig defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .ocr_engine import DEFAULT_MODEL_DIR, DEFAULT_TESSERACT_CONFIG, EngineKind

DEFAULT_CONFIG_PATH = Path("textlens.yaml")
CONFIG_ENV_VAR = "TEXTLENS_CONFIG"


@dataclass
class EngineConfig:
    """Engine selection and backend options, fixed for the lifetime of a session."""

    engines: List[EngineKind] = field(
        default_factory=lambda: [EngineKind.EASYOCR, EngineKind.TESSERACT]
    )
    preferred_engine: Optional[EngineKind] = None
    languages: List[str] = field(default_factory=lambda: ['en'])
    tesseract_config: str = DEFAULT_TESSERACT_CONFIG
    tesseract_timeout: float = 0
    model_dir: Path = DEFAULT_MODEL_DIR
    download_models: bool = False
    use_gpu: bool = False
    max_workers: int = 2
    memory_limit_mb: Optional[int] = None
    log_level: str = "INFO"

    def __post_init__(self):
        if isinstance(self.languages, str):
            self.languages = [self.languages]
        self.languages = [str(code) for code in self.languages]
        if not self.languages:
            raise ValueError("At least one language must be configured")
        if isinstance(self.engines, (str, EngineKind)):
            self.engines = [self.engines]
        self.engines = [EngineKind.parse(kind) for kind in self.engines]
        if not self.engines:
            raise ValueError("At least one OCR engine must be enabled")
        if self.preferred_engine is not None:
            self.preferred_engine = EngineKind.parse(self.preferred_engine)
        self.model_dir = Path(self.model_dir).expanduser()
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(str(self.log_level).upper())
        return level if isinstance(level, int) else logging.INFO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engines": [kind.value for kind in self.engines],
            "preferred_engine": self.preferred_engine.value if self.preferred_engine else None,
            "languages": list(self.languages),
            "tesseract_config": self.tesseract_config,
            "tesseract_timeout": self.tesseract_timeout,
            "model_dir": str(self.model_dir),
            "download_models": self.download_models,
            "use_gpu": self.use_gpu,
            "max_workers": self.max_workers,
            "memory_limit_mb": self.memory_limit_mb,
            "log_level": self.log_level,
        }


def load_yaml_config(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    if path:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load engine configuration from YAML, falling back to defaults.

    The file is looked up from the argument, then $TEXTLENS_CONFIG, then
    ./textlens.yaml. A missing file yields the defaults.
    """
    config_path = resolve_config_path(path)
    data = load_yaml_config(config_path) if config_path.exists() else {}
    defaults = EngineConfig()

    return EngineConfig(
        engines=data.get("engines", defaults.engines),
        preferred_engine=data.get("preferred_engine", defaults.preferred_engine),
        languages=data.get("languages", defaults.languages),
        tesseract_config=data.get("tesseract_config", defaults.tesseract_config),
        tesseract_timeout=data.get("tesseract_timeout", defaults.tesseract_timeout),
        model_dir=Path(data.get("model_dir", defaults.model_dir)),
        download_models=data.get("download_models", defaults.download_models),
        use_gpu=data.get("use_gpu", defaults.use_gpu),
        max_workers=data.get("max_workers", defaults.max_workers),
        memory_limit_mb=data.get("memory_limit_mb", defaults.memory_limit_mb),
        log_level=data.get("log_level", defaults.log_level),
    )


def dump_config(config: EngineConfig, path: Optional[Path] = None) -> None:
    """Persist the configuration to YAML."""
    config_path = path or DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config.to_dict(), handle, sort_keys=False)
