"""
Parsers used by the migration pipeline.

Currently this subpackage exposes ``extract_image_urls`` and
``rewrite_html_urls`` from :mod:`blog_migrator.parsers.html_images`.
"""

from .html_images import extract_image_urls, rewrite_html_urls

__all__ = ["extract_image_urls", "rewrite_html_urls"]
