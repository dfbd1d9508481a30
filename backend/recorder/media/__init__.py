"""Default storage backend: a local media library.

Recordings are copied into a storage directory under UUID-based names and
their metadata is tracked in DuckDB so that the locators handed back to the
browser can be resolved by the media router.
"""
