"""Command module for extracting relayed commands from reply text.

This module provides:
- SessionReference: A token or session id found in a reply
- ExtractedCommand: Session id plus cleaned command text
- find_session_reference / find_session_references: Locate session references
- clean_command_text: Strip references, mentions and lead-in phrases
- extract_command: Full extraction with token resolution
"""

from cmdrelay.core.commands.parser import (
    ExtractedCommand,
    SessionReference,
    clean_command_text,
    extract_command,
    find_session_reference,
    find_session_references,
)

__all__ = [
    "ExtractedCommand",
    "SessionReference",
    "clean_command_text",
    "extract_command",
    "find_session_reference",
    "find_session_references",
]
