"""Policy file block indexing, toggling and consistency checks."""

from security_controls.policy.blocks import (
    BlockIndex,
    ControlBlock,
    PolicyFile,
    block_status,
    build_block_index,
)
from security_controls.policy.consistency import ValidationReport, validate_catalog
from security_controls.policy.toggle import ToggleEngine, ToggleResult

__all__ = [
    "BlockIndex",
    "ControlBlock",
    "PolicyFile",
    "ToggleEngine",
    "ToggleResult",
    "ValidationReport",
    "block_status",
    "build_block_index",
    "validate_catalog",
]
