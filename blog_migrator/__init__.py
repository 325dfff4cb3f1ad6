"""
Top-level package for the legacy blog migration utility.

This package bundles all components required to recover posts, users and
taxonomies from a WordPress SQL dump (or a REST export), move their images
to the destination asset service, rewrite the embedded HTML, and write the
resulting documents to the destination store.  Modules are split into
subpackages:

* :mod:`blog_migrator.extractors` – SQL dump tokenizer and export readers
* :mod:`blog_migrator.mappers` – projection of raw rows into typed records
* :mod:`blog_migrator.parsers` – image discovery and URL rewriting in HTML
* :mod:`blog_migrator.migrators` – media migration and the REST clients
* :mod:`blog_migrator.models` – records, destination documents and states
* :mod:`blog_migrator.utils` – event logging, slugs and redirect maps

Each layer has no direct knowledge of configuration or execution strategy;
orchestration is handled in :mod:`blog_migrator.migration_tool`.
"""
