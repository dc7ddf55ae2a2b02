"""ORM models for the kernel."""

from rangescan_kernel.models.stored_key import StoredKeyModel

__all__ = ["StoredKeyModel"]
