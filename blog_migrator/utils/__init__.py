"""
Utility helpers used by the migration tool.

This subpackage exposes convenience functions for structured logging and
redirect map generation.
"""

from .errors import ERRORS, Diagnostics, report_error, report_ok
from .redirects import Redirect, redirect_for, write_redirect_map

__all__ = ["ERRORS", "Diagnostics", "report_error", "report_ok", "Redirect", "redirect_for", "write_redirect_map"]
