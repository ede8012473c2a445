"""File upload and storage module for duochat.

Files are stored on local disk and their metadata is tracked in DuckDB.
Chat messages only carry a reference (name, size, URL) resolved from the
upload token.
"""
