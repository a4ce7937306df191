"""
Name Resolver
=============

Turns the address a page fetched into the command name used for
registry lookup.

The JavaScript side may put the command in the authority, in the path,
or split across both, and may percent-encode it:

    app://greet                     →  greet
    app://mycommands/greet/         →  mycommands/greet
    app:///greet                    →  greet
    app://%2Fgreet                  →  greet
    app://files/read%20me           →  files/read me

Algorithm
---------
1. host = authority, or "" when there is none.
2. path = path with one leading "/" removed.
3. Join: host alone, path alone, or "host/path".
4. Trim every leading and trailing "/".
5. Percent-decode as UTF-8. If the bytes are not valid UTF-8, keep
   the undecoded text.

Steps 4 and 5 repeat until the name stops changing, so a decoded
"/" at either end is trimmed too and resolving a resolved name is a
no-op.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import unquote, urlsplit


def _percent_decode(text: str) -> str:
    """Best-effort UTF-8 percent-decoding. Never raises."""
    try:
        return unquote(text, encoding="utf-8", errors="strict")
    except UnicodeDecodeError:
        return text


def resolve_command_name(authority: Optional[str], path: str) -> str:
    """Resolve an authority and a path into a canonical command name.

    Parameters
    ----------
    authority : str or None
        The URI authority (``greet`` in ``app://greet``). None and ""
        are treated the same.
    path : str
        The URI path with the query already removed.

    Returns
    -------
    str
        The command name. May be empty if the address named nothing.
    """
    host = authority or ""
    path = path or ""
    if path.startswith("/"):
        path = path[1:]

    if not host:
        combined = path
    elif not path:
        combined = host
    else:
        combined = f"{host}/{path}"

    name = combined.strip("/")
    # Only double-encoded names (e.g. a%2541) differ from a single decode.
    # Each successful decode shortens the string, so this terminates.
    while True:
        decoded = _percent_decode(name).strip("/")
        if decoded == name:
            return name
        name = decoded


def split_uri(uri: str) -> tuple[str, str, str]:
    """Split a URI into (scheme, authority, path). Query and fragment are dropped."""
    parts = urlsplit(uri)
    return parts.scheme, parts.netloc, parts.path


def resolve_uri(uri: str) -> str:
    """Resolve a full URI string, e.g. ``"app://mycommands/greet/"``.

    Input without "://" is taken as a bare name and resolved as a path,
    so ``resolve_uri(resolve_uri(uri)) == resolve_uri(uri)`` also for
    names containing ":" (but not "://"). Idempotence of the name
    itself is a property of :func:`resolve_command_name`.
    """
    if "://" not in uri:
        return resolve_command_name(None, uri)
    _, authority, path = split_uri(uri)
    return resolve_command_name(authority, path)
