"""Write-side kernel services."""

from rangescan_kernel.services.key_writer import KeyWriter

__all__ = ["KeyWriter"]
