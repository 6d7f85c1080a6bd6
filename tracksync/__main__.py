"""
Main entry point for tracksync.

Allows running the package as a script, e.g. `python -m tracksync sync --destination /mnt/player`.
"""

from .cli import app

if __name__ == "__main__":
    app()
