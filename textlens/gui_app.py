#!/usr/bin/env python3
"""
GUI Application Module

This module provides a graphical user interface for the OCR application using tkinter
with drag-and-drop functionality via tkinterdnd2. Recognition runs on the dispatcher's
worker threads; the window polls for finished requests every 100 ms and never blocks.
Picking a new image while one is still being recognized replaces the old request.
"""

import tkinter as tk
from tkinter import ttk, filedialog, messagebox, scrolledtext
import logging
from pathlib import Path
from typing import Optional

try:
    from tkinterdnd2 import TkinterDnD, DND_FILES
    TKINTERDND_AVAILABLE = True
except ImportError:
    TKINTERDND_AVAILABLE = False
    logging.info("tkinterdnd2 not available. Drag-and-drop functionality will be disabled. "
                 "Install with: pip install 'textlens[gui]'")

from .config import EngineConfig, load_config
from .dispatcher import Delivery, Dispatcher
from .engine_registry import EngineRegistry, build_registry
from .exceptions import OCRError
from .image_source import SUPPORTED_EXTENSIONS
from .results import RecognitionResult, export_text, format_text

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 100


def describe_result(result: RecognitionResult) -> str:
    """Status line for a finished recognition."""
    elapsed = f"{result.elapsed_ms:.0f} ms" if result.elapsed_ms is not None else "n/a"
    return f"Done with {result.engine}: confidence {result.confidence:.1%}, {elapsed}"


def describe_stats(result: RecognitionResult) -> str:
    stats = result.stats()
    return (f"Characters: {stats['characters']} | Lines: {stats['lines']} | "
            f"Non-empty lines: {stats['non_empty_lines']} | Regions: {stats['regions']}")


def describe_error(error: OCRError) -> str:
    message = str(error)
    if error.suggestion:
        message += f"\n\nSuggestion: {error.suggestion}"
    return message


class OCRGUIApp:
    """
    Main GUI application class for OCR processing.

    Features:
    - Drag-and-drop and file dialog input
    - Newer picks supersede requests still in flight
    - Confidence and timing in the status bar
    - Save with optional whitespace trimming
    """

    def __init__(self, root: tk.Tk, registry: EngineRegistry, config: Optional[EngineConfig] = None):
        """
        Initialize the GUI application.

        Args:
            root: Tkinter root window
            registry: Engine registry built at startup
            config: Engine configuration, defaults when omitted
        """
        self.root = root
        self.root.title("TextLens")
        self.root.geometry("800x600")
        self.root.minsize(600, 400)

        config = config or EngineConfig()
        self.dispatcher = Dispatcher(
            registry,
            sink=self.handle_delivery,
            max_workers=config.max_workers,
            memory_limit_mb=config.memory_limit_mb,
        )

        self.current_file: Optional[Path] = None
        self.current_result: Optional[RecognitionResult] = None

        self.setup_ui()
        if TKINTERDND_AVAILABLE:
            self.setup_drag_drop()

        self.engine_label.config(text=f"Engine: {registry.active_kind.value}")
        self.root.protocol("WM_DELETE_WINDOW", self.on_close)
        self.root.after(POLL_INTERVAL_MS, self.poll_dispatcher)

    def setup_ui(self):
        """Setup the main user interface."""
        main_frame = ttk.Frame(self.root, padding="10")
        main_frame.pack(fill=tk.BOTH, expand=True)

        title_label = ttk.Label(main_frame, text="TextLens", font=("Arial", 16, "bold"))
        title_label.pack(pady=(0, 10))

        drop_frame = ttk.LabelFrame(main_frame, text="Drop Image Here", padding="10")
        drop_frame.pack(fill=tk.X, pady=(0, 10))

        self.drop_label = ttk.Label(drop_frame,
                                    text="Drag and drop an image (PNG, JPG, BMP, TIFF, WebP, GIF) here\n"
                                         "Or click 'Browse Files' to select one",
                                    justify=tk.CENTER,
                                    background="#f0f0f0",
                                    relief="sunken")
        self.drop_label.pack(fill=tk.X, expand=True, pady=20, padx=20)

        button_frame = ttk.Frame(main_frame)
        button_frame.pack(fill=tk.X, pady=(0, 10))

        self.browse_button = ttk.Button(button_frame, text="Browse Files", command=self.browse_files)
        self.browse_button.pack(side=tk.LEFT, padx=(0, 10))

        self.clear_button = ttk.Button(button_frame, text="Clear Results",
                                       command=self.clear_results, state=tk.DISABLED)
        self.clear_button.pack(side=tk.LEFT, padx=(0, 10))

        self.save_button = ttk.Button(button_frame, text="Save Results",
                                      command=self.save_results, state=tk.DISABLED)
        self.save_button.pack(side=tk.LEFT, padx=(0, 10))

        self.copy_button = ttk.Button(button_frame, text="Copy",
                                      command=self.copy_results, state=tk.DISABLED)
        self.copy_button.pack(side=tk.LEFT, padx=(0, 10))

        self.preserve_whitespace = tk.BooleanVar(value=True)
        ttk.Checkbutton(button_frame, text="Preserve whitespace",
                        variable=self.preserve_whitespace).pack(side=tk.LEFT)

        self.engine_label = ttk.Label(button_frame, text="")
        self.engine_label.pack(side=tk.RIGHT)

        self.progress_bar = ttk.Progressbar(main_frame, mode='indeterminate')
        self.progress_bar.pack(fill=tk.X, pady=(0, 10))

        self.status_label = ttk.Label(main_frame, text="Ready")
        self.status_label.pack(anchor=tk.W, pady=(0, 10))

        results_frame = ttk.LabelFrame(main_frame, text="Extracted Text", padding="10")
        results_frame.pack(fill=tk.BOTH, expand=True)

        self.results_text = scrolledtext.ScrolledText(results_frame, wrap=tk.WORD, font=("Courier", 10))
        self.results_text.pack(fill=tk.BOTH, expand=True)

        self.file_info_label = ttk.Label(results_frame, text="")
        self.file_info_label.pack(anchor=tk.W, pady=(5, 0))

    def setup_drag_drop(self):
        """Setup drag and drop functionality."""
        self.drop_label.drop_target_register(DND_FILES)
        self.drop_label.dnd_bind('<<Drop>>', self.on_drop)

        self.drop_label.bind('<Enter>', lambda e: self.drop_label.config(cursor="hand2"))
        self.drop_label.bind('<Leave>', lambda e: self.drop_label.config(cursor=""))

    def on_drop(self, event):
        """Handle file drop event."""
        files = self.root.splitlist(event.data)
        if files:
            self.process_file(Path(files[0]))

    def browse_files(self):
        """Open file browser dialog."""
        patterns = ' '.join(f'*{ext}' for ext in sorted(SUPPORTED_EXTENSIONS))
        filename = filedialog.askopenfilename(
            title="Select image to process",
            filetypes=[('Image files', patterns), ('All files', '*.*')]
        )
        if filename:
            self.process_file(Path(filename))

    def process_file(self, file_path: Path):
        """Submit an image; any request still in flight is superseded."""
        handle = self.dispatcher.submit_path(file_path)
        logger.info(f"Submitted {file_path.name} as request {handle.request_id}")

        self.current_file = file_path
        self.current_result = None
        self.status_label.config(text=f"Processing: {file_path.name}")
        self.results_text.delete(1.0, tk.END)
        self.file_info_label.config(text="")
        self.clear_button.config(state=tk.DISABLED)
        self.save_button.config(state=tk.DISABLED)
        self.copy_button.config(state=tk.DISABLED)
        self.progress_bar.start(10)

    def poll_dispatcher(self):
        """Drain finished requests and schedule the next check."""
        self.dispatcher.poll()
        self.root.after(POLL_INTERVAL_MS, self.poll_dispatcher)

    def handle_delivery(self, delivery: Delivery):
        """Sink for the dispatcher, called on the Tk thread from poll()."""
        self.progress_bar.stop()
        if delivery.ok:
            self.display_results(delivery.result)
        else:
            self.display_error(delivery.error)

    def display_results(self, result: RecognitionResult):
        """Display processing results in the UI."""
        self.current_result = result
        self.results_text.delete(1.0, tk.END)
        self.results_text.insert(tk.END, result.text or "(no text found)")
        self.file_info_label.config(text=describe_stats(result))

        self.clear_button.config(state=tk.NORMAL)
        self.save_button.config(state=tk.NORMAL if result.text else tk.DISABLED)
        self.copy_button.config(state=tk.NORMAL if result.text else tk.DISABLED)
        self.status_label.config(text=describe_result(result))

    def display_error(self, error: OCRError):
        error_msg = describe_error(error)
        self.status_label.config(text=f"Error: {error.message}")
        messagebox.showerror("Processing Error", error_msg)

    def clear_results(self):
        """Clear the results display."""
        self.current_result = None
        self.results_text.delete(1.0, tk.END)
        self.file_info_label.config(text="")
        self.clear_button.config(state=tk.DISABLED)
        self.save_button.config(state=tk.DISABLED)
        self.copy_button.config(state=tk.DISABLED)
        self.status_label.config(text="Ready")

    def save_results(self):
        """Save the current results to a file."""
        if self.current_result is None or not self.current_result.text:
            messagebox.showwarning("Save Results", "No results to save.")
            return

        initial = f"{self.current_file.stem}.txt" if self.current_file else "ocr_result.txt"
        filename = filedialog.asksaveasfilename(
            title="Save Results",
            defaultextension=".txt",
            initialfile=initial,
            filetypes=[('Text files', '*.txt'), ('All files', '*.*')]
        )
        if not filename:
            return

        try:
            path = export_text(self.current_result, filename,
                               preserve_whitespace=self.preserve_whitespace.get())
            messagebox.showinfo("Save Results", f"Results saved to {path}")
        except PermissionError:
            messagebox.showerror("Save Error", f"Permission denied saving to {filename}.\n\n"
                                               "Please check directory permissions and try a different location.")
        except OSError as e:
            messagebox.showerror("Save Error", f"OS error saving to {filename}: {e}\n\n"
                                               "This may be due to disk space or file system issues.")

    def copy_results(self):
        """Copy the current text to the clipboard."""
        if self.current_result is None:
            return
        self.root.clipboard_clear()
        self.root.clipboard_append(format_text(self.current_result.text, self.preserve_whitespace.get()))
        self.status_label.config(text="Copied to clipboard")

    def on_close(self):
        self.dispatcher.shutdown(wait=False)
        self.root.destroy()


def main(config: Optional[EngineConfig] = None):
    """Main entry point for the GUI application."""
    config = config or load_config()
    logging.getLogger().setLevel(config.log_level_value)

    try:
        registry = build_registry(config)
    except OCRError as e:
        logger.error(str(e))
        root = tk.Tk()
        root.withdraw()
        messagebox.showerror("OCR Engine Error", describe_error(e))
        root.destroy()
        raise SystemExit(1)

    if not TKINTERDND_AVAILABLE:
        logger.warning("tkinterdnd2 not available. Drag-and-drop functionality will be disabled.")
        root = tk.Tk()
    else:
        root = TkinterDnD.Tk()

    OCRGUIApp(root, registry, config)
    root.mainloop()


if __name__ == '__main__':
    main()
