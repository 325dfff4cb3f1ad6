"""
Media migration and destination API clients.

This subpackage provides the media migrator (download, upload, dedup and
HTML rewriting) and the REST clients it relies on: the legacy storage
downloader, the asset service and the destination document store.  Every
client takes an explicit timeout and waits out ``429`` responses.
"""
