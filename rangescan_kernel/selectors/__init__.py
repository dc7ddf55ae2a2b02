"""Read-only selectors."""

from rangescan_kernel.selectors.base import BaseSelector
from rangescan_kernel.selectors.key_selector import (
    KeySelector,
    decode_cursor,
    encode_cursor,
)

__all__ = ["BaseSelector", "KeySelector", "decode_cursor", "encode_cursor"]
