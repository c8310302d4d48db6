#!/usr/bin/env python3
"""
TextLens - Main Entry Point
Standalone OCR application for extracting text from images
"""

import sys


def main():
    """Main entry point for the OCR application"""
    try:
        if len(sys.argv) > 1:
            # CLI mode
            from textlens.cli_app import cli
            cli()
        else:
            # GUI mode
            try:
                from textlens.gui_app import main as gui_main
            except ImportError as e:
                print(f"GUI mode not available: {e}")
                print("tkinter is required for GUI mode. Falling back to CLI mode. Use --help for usage.")
                from textlens.cli_app import cli
                cli()
                return
            gui_main()
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        sys.exit(1)


if __name__ == "__main__":
    main()
