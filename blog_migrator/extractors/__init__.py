"""
Extractors for legacy blog sources.

This subpackage recovers rows from the ``INSERT`` statements of a MySQL
dump without a SQL engine, bundles the WordPress tables the migration
needs, and reads the ``posts.json`` export of the REST fetcher.
"""
