"""storesync - Local-first store synchronization for multi-tenant backends."""

__version__ = "0.1.0"
