"""DNS records for cluster services and endpoints, with dynamic configuration sync."""

__version__ = "0.1.0"
__all__ = ["config", "objects", "records", "server", "sync", "sync_dir", "validation"]