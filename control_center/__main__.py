"""
Control Center entry point.

Usage:
    python -m control_center serve --port 8000
    python -m control_center show-issue I811
"""

from .cli import main

if __name__ == "__main__":
    main()
