"""
Mappers from raw legacy rows to typed records.

:mod:`blog_migrator.mappers.record_mapper` zips rows with their column
schema, normalizes statuses and dates, and joins posts with their authors,
taxonomies and featured images.
"""
