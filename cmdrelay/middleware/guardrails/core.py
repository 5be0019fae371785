"""Command guardrails applied before anything reaches the executor.

This module provides the deny-list filter for relayed command text. It is a
deny-list, not a sandbox: matching is case-insensitive regex matching over the
raw text, and a command is either passed through unchanged or rejected
outright. Nothing is ever rewritten.

The framework provides:
1. CommandPolicy - configuration for filter behavior
2. CommandRejected - exception for blocked commands
3. check_command() - main check function, raises on violation
4. is_safe() - boolean predicate used by the event pipeline

Example:
    >>> from cmdrelay.middleware.guardrails import is_safe
    >>> is_safe("list files in the project root")
    True
    >>> is_safe("sudo reboot")
    False
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


DEFAULT_MAX_LENGTH = 1000

# Dangerous shell idioms. Order only affects which pattern is reported.
DEFAULT_BLOCKED_PATTERNS: tuple[str, ...] = (
    r"rm\s+-rf",  # recursive forced deletion
    r"sudo\s+",  # privilege escalation
    r"chmod\s+777",  # world-writable permissions
    r">\s*/dev/null",  # redirection to the void device
    r"curl.*\|\s*sh",  # pipe downloaded script to shell
    r"wget.*\|\s*sh",
    r"eval\s*\(",  # dynamic code evaluation
    r"exec\s*\(",
)


# ============================================================================
# Policy Configuration
# ============================================================================


@dataclass
class CommandPolicy:
    """Configuration for the command filter.

    Attributes:
        max_length: Commands longer than this many characters are rejected.
        blocked_patterns: Regex deny-list, matched case-insensitively.
        extra_patterns: Additional patterns appended to blocked_patterns.
        log_blocked_attempts: If True, log every rejected command.
    """

    max_length: int = DEFAULT_MAX_LENGTH
    blocked_patterns: tuple[str, ...] = DEFAULT_BLOCKED_PATTERNS
    extra_patterns: set[str] = field(default_factory=set)
    log_blocked_attempts: bool = True

    def compiled_patterns(self) -> list[re.Pattern[str]]:
        """Get all deny-list patterns compiled with IGNORECASE."""
        patterns = list(self.blocked_patterns) + sorted(self.extra_patterns)
        return [_compile(p) for p in patterns]


_compiled_cache: dict[str, re.Pattern[str]] = {}


def _compile(pattern: str) -> re.Pattern[str]:
    compiled = _compiled_cache.get(pattern)
    if compiled is None:
        compiled = re.compile(pattern, re.IGNORECASE)
        _compiled_cache[pattern] = compiled
    return compiled


# ============================================================================
# Security Checks
# ============================================================================


class CommandRejected(Exception):
    """Raised when a command violates the guardrails."""

    def __init__(self, message: str, command: str, violation_type: str):
        super().__init__(message)
        self.command = command
        self.violation_type = violation_type


def _preview(command: str, limit: int = 80) -> str:
    return command if len(command) <= limit else command[:limit] + "..."


def check_command(command: str, policy: CommandPolicy | None = None) -> None:
    """Check if a command violates any guardrail.

    Args:
        command: Command text extracted from an inbound message.
        policy: Filter configuration. Defaults to CommandPolicy().

    Raises:
        CommandRejected: If the command is oversized or matches the deny-list.
    """
    policy = policy or CommandPolicy()

    if len(command) > policy.max_length:
        msg = (
            f"Command length {len(command)} exceeds limit of {policy.max_length}"
        )
        if policy.log_blocked_attempts:
            logger.warning("GUARDRAIL BLOCKED: %s", msg)
        raise CommandRejected(msg, command, "too_long")

    for pattern in policy.compiled_patterns():
        if pattern.search(command):
            msg = f"Command matches blocked pattern '{pattern.pattern}'"
            if policy.log_blocked_attempts:
                logger.warning(
                    "GUARDRAIL BLOCKED: %s (command: %s)", msg, _preview(command)
                )
            raise CommandRejected(msg, command, "dangerous_pattern")


def is_safe(command: str, policy: CommandPolicy | None = None) -> bool:
    """Return True if the command may be submitted to the executor.

    Args:
        command: Command text to check.
        policy: Filter configuration. Defaults to CommandPolicy().

    Returns:
        False if check_command() would raise, True otherwise.
    """
    try:
        check_command(command, policy)
    except CommandRejected:
        return False
    return True


def create_default_policy() -> CommandPolicy:
    """Create the command policy from application settings.

    Returns:
        CommandPolicy with the configured length limit and default deny-list.
    """
    from cmdrelay.config import settings

    return CommandPolicy(
        max_length=settings.max_command_length,
        log_blocked_attempts=True,
    )
