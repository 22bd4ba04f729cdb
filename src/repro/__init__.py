"""File-artifact based analysis pipeline: prepare -> fit -> figures."""

__version__ = "0.1.0"
