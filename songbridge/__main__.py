"""
Main entry point for the songbridge application.

Allows running the package as a script, e.g. `python -m songbridge`.
"""

from .cli import app

if __name__ == "__main__":
    app()
