"""
Parsers module for raw model output.

This module contains:
- response_recovery: the JSON/XML recovery cascade
"""

from .response_recovery import recover

__all__ = ["recover"]
