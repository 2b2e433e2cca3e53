"""
feedengine CLI Package

Typer-based command-line interface for compiling and evaluating feed
definitions against fixture corpora.
"""

from feedengine import __version__

__all__ = ['__version__']
