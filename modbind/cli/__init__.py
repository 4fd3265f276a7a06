"""Command-line entry points for modbind."""
from .main import main

__all__ = ["main"]
