"""Dictionary-style access to partitioned table storage.

This package provides:
- A typed property codec and a dictionary-backed table entity
- Named key/value dictionaries stored inside a shared table
- Pluggable backends (Azure Table Storage, MongoDB, in-memory)
- A logging handler that writes log records as table rows
"""

__all__ = ["core", "logging"]
