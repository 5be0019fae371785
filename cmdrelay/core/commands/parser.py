# cmdrelay/core/commands/parser.py
"""Pure function-based extractor for session references and command text."""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

_TOKEN = r"([A-Z0-9]{6,8})(?![A-Z0-9])"

# "session #AB12CD34", "session: AB12CD34", "会话 #AB12CD34"
KEYWORD_REFERENCE_PATTERN = re.compile(
    r"(?:会话|session)[:：\s]*#?" + _TOKEN,
    re.IGNORECASE,
)

# Keyword omitted: "#AB12CD34"
HASH_REFERENCE_PATTERN = re.compile(r"(?<![\w#])#" + _TOKEN, re.IGNORECASE)

UUID_PATTERN = re.compile(
    r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}",
    re.IGNORECASE,
)

# Channel mention placeholders such as "@_user_1"
MENTION_PATTERN = re.compile(r"@_user_\d+")

LEAD_IN_PATTERN = re.compile(
    r"^(?:(?:please|run|execute|help\s+me)(?![\w-])|请|帮我|执行|运行|命令)[:：\s]*",
    re.IGNORECASE,
)

BLANK_LINES_PATTERN = re.compile(r"\n\s*\n")


@dataclass
class SessionReference:
    """A session reference found in reply text.

    Attributes:
        kind: "token" for a short token, "uuid" for a raw session id.
        value: The token (uppercased) or the session id.
    """

    kind: Literal["token", "uuid"]
    value: str


@dataclass
class ExtractedCommand:
    """Represents a command extracted from a reply.

    Attributes:
        session_id: Session the reply refers to.
        command: Command text with references and lead-ins stripped.
        token: Token the user typed, if the reference was a token.
    """

    session_id: str
    command: str
    token: str | None = None


def find_session_references(text: str) -> list[SessionReference]:
    """Find every candidate session reference in reply text, in priority order.

    Keyword token references come first, then bare "#TOKEN" references,
    then UUID-shaped substrings. UUIDs are only considered when the text
    carries no token reference at all.

    Args:
        text: Raw reply text.

    Returns:
        List of SessionReference, empty if the text refers to no session.
    """
    references: list[SessionReference] = []
    seen: set[str] = set()

    for pattern in (KEYWORD_REFERENCE_PATTERN, HASH_REFERENCE_PATTERN):
        for match in pattern.finditer(text):
            token = match.group(1).upper()
            if token not in seen:
                seen.add(token)
                references.append(SessionReference(kind="token", value=token))

    if references:
        return references

    for match in UUID_PATTERN.finditer(text):
        session_id = match.group(0).lower()
        if session_id not in seen:
            seen.add(session_id)
            references.append(SessionReference(kind="uuid", value=session_id))

    return references


def find_session_reference(text: str) -> SessionReference | None:
    """Find the highest-priority session reference in reply text.

    Args:
        text: Raw reply text.

    Returns:
        SessionReference, or None if the text refers to no session.

    Examples:
        >>> find_session_reference("session #AB12CD34 list files")
        SessionReference(kind='token', value='AB12CD34')

        >>> find_session_reference("hello")
        None
    """
    references = find_session_references(text)
    return references[0] if references else None


def clean_command_text(text: str, token: str | None = None) -> str:
    """Strip session references, mentions and lead-in phrases from reply text.

    Keyword references and UUIDs are always removed. A bare "#TOKEN" is only
    removed for the token that identified the session, so that issue numbers
    and similar "#123456" text survive.

    Args:
        text: Raw reply text.
        token: Token that identified the session, if any.

    Returns:
        The command text, possibly empty.

    Examples:
        >>> clean_command_text("session #AB12CD34 list files")
        'list files'

        >>> clean_command_text("会话 #AB12CD34 请执行 npm test")
        'npm test'
    """
    command = KEYWORD_REFERENCE_PATTERN.sub("", text)
    command = UUID_PATTERN.sub("", command)
    if token:
        command = HASH_REFERENCE_PATTERN.sub(
            lambda m: "" if m.group(1).upper() == token.upper() else m.group(0),
            command,
        )
    command = MENTION_PATTERN.sub("", command)

    command = command.lstrip()
    while True:
        stripped = LEAD_IN_PATTERN.sub("", command, count=1).lstrip()
        if stripped == command:
            break
        command = stripped

    command = BLANK_LINES_PATTERN.sub("\n", command)
    return command.strip()


def extract_command(
    text: str, resolve_token: Callable[[str], str | None]
) -> ExtractedCommand | None:
    """Extract the target session and the command from reply text.

    Token references are resolved in order and the first live one wins. A
    UUID is taken as the session id directly without resolution.

    Args:
        text: Raw reply text from any channel.
        resolve_token: Maps a token to a session id, or None if unknown.

    Returns:
        ExtractedCommand, or None if the text names no resolvable session
        or nothing remains after stripping.

    Examples:
        >>> extract_command("session #AB12CD34 list files", {"AB12CD34": "s-1"}.get)
        ExtractedCommand(session_id='s-1', command='list files', token='AB12CD34')

        >>> extract_command("session #AB12CD34", {"AB12CD34": "s-1"}.get)
        None
    """
    session_id: str | None = None
    token: str | None = None

    for reference in find_session_references(text):
        if reference.kind == "uuid":
            session_id = reference.value
            break
        resolved = resolve_token(reference.value)
        if resolved is not None:
            session_id = resolved
            token = reference.value
            break

    if session_id is None:
        return None

    command = clean_command_text(text, token)
    if not command:
        return None

    return ExtractedCommand(session_id=session_id, command=command, token=token)
