#!/usr/bin/env python3
"""
CLI Application Module

This module provides a command-line interface for the OCR application using Click.
It recognizes a single image through the dispatcher, lists the installed engines
and launches the GUI.
"""

import json
import logging
import sys
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Optional, Dict, Any

import click

from . import __version__
from .config import EngineConfig, load_config
from .dispatcher import Dispatcher
from .engine_registry import build_registry
from .exceptions import OCRError, EngineUnavailableError, EngineInitError
from .ocr_engine import EngineKind, backend_available
from .results import RecognitionResult, format_text

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


class OutputFormatter:
    """Handles different output formats for OCR results."""

    @staticmethod
    def format_txt(result: RecognitionResult, preserve_whitespace: bool = True) -> str:
        """Format as plain text."""
        return format_text(result.text, preserve_whitespace)

    @staticmethod
    def format_json(result: RecognitionResult, metadata: Optional[Dict[str, Any]] = None,
                    preserve_whitespace: bool = True) -> str:
        """Format as JSON."""
        output = result.to_dict()
        output['text'] = format_text(result.text, preserve_whitespace)
        output['metadata'] = metadata or {}
        return json.dumps(output, indent=2, ensure_ascii=False)


def save_output(content: str, output_path: Optional[Path]):
    """Save content to file or print to stdout."""
    if output_path:
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(content)
            logger.info(f"Results saved to {output_path}")
        except PermissionError:
            logger.error(f"Permission denied writing to {output_path}. Please check directory permissions.")
            raise
        except OSError as e:
            logger.error(f"OS error writing to {output_path}: {e}. This may be due to disk space or file system issues.")
            raise
    else:
        click.echo(content)


def report_error(error: OCRError):
    """Log a typed error and its suggestion."""
    logger.error(str(error))
    if error.suggestion:
        logger.error(f"Suggestion: {error.suggestion}")


def recognize_file(file_path: Path, config: EngineConfig, output_format: str,
                   output_path: Optional[Path] = None, timeout: Optional[float] = None,
                   preserve_whitespace: bool = True) -> bool:
    """Recognize one image file and write the formatted result."""
    try:
        registry = build_registry(config)
    except (EngineUnavailableError, EngineInitError) as e:
        report_error(e)
        return False

    dispatcher = Dispatcher(registry, max_workers=1, memory_limit_mb=config.memory_limit_mb)
    handle = dispatcher.submit_path(file_path)
    try:
        delivery = dispatcher.wait(handle, timeout=timeout)
    except FutureTimeoutError:
        logger.error(f"Recognition of {file_path} did not finish within {timeout} seconds")
        dispatcher.shutdown(wait=False)
        return False
    dispatcher.shutdown()

    if not delivery.ok:
        report_error(delivery.error)
        return False

    result = delivery.result
    logger.info(
        f"Recognized {result.stats()['characters']} characters with {result.engine} "
        f"(confidence {result.confidence:.1%}, {result.elapsed_ms:.0f} ms)"
    )

    if output_format == 'txt':
        content = OutputFormatter.format_txt(result, preserve_whitespace)
    elif output_format == 'json':
        metadata = {
            'file_path': str(file_path),
            'languages': list(config.languages),
            'request_id': handle.request_id,
        }
        content = OutputFormatter.format_json(result, metadata, preserve_whitespace)
    else:
        raise ValueError(f"Unsupported output format: {output_format}")

    try:
        save_output(content, output_path)
    except OSError:
        return False
    return True


# Click CLI Definition

@click.group()
@click.version_option(__version__)
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              help='YAML configuration file (default: $TEXTLENS_CONFIG or ./textlens.yaml)')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config_path, verbose):
    """TextLens - Extract text from images via command line."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    logging.getLogger().setLevel(logging.DEBUG if verbose else config.log_level_value)
    ctx.obj = config


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--engine', type=click.Choice([kind.value for kind in EngineKind]),
              help='Force specific OCR engine')
@click.option('--format', '-f', 'output_format', type=click.Choice(['txt', 'json']), default='txt',
              help='Output format')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path),
              help='Output file path')
@click.option('--timeout', '-t', type=click.FloatRange(min=0, min_open=True),
              help='Seconds to wait for recognition. Tesseract aborts at this limit; '
                   'an EasyOCR call cannot be interrupted and finishes before exit')
@click.option('--trim', is_flag=True,
              help='Trim each line and drop blank lines')
@click.pass_obj
def recognize(config, file_path, engine, output_format, output, timeout, trim):
    """Recognize text in a single image file."""
    if engine:
        config.engines = [EngineKind.parse(engine)]
        config.preferred_engine = config.engines[0]
    if timeout:
        config.tesseract_timeout = timeout

    success = recognize_file(file_path, config, output_format, output, timeout,
                             preserve_whitespace=not trim)
    if not success:
        sys.exit(1)


@cli.command()
def engines():
    """List OCR engines and whether they are installed."""
    available = [kind for kind in EngineKind if backend_available(kind)]
    click.echo("OCR engines:")
    for kind in EngineKind:
        status = "available" if kind in available else "not installed"
        click.echo(f"  - {kind.value}: {status}")

    if not available:
        click.echo("No OCR engines available. Install easyocr or the tesseract binary.", err=True)
        sys.exit(1)


@cli.command()
@click.pass_obj
def gui(config):
    """Open the graphical interface."""
    from .gui_app import main as gui_main
    gui_main(config)


if __name__ == '__main__':
    cli()
