"""
Splits a certsh command line into tokens.

The first token of a line is the verb. Quoting, trailing comments and label
lines are handled here; placeholder expansion happens later, per token.
"""
import csv
from typing import List

_QUOTES = ("'", '"')
_BLANKS = (" ", "\t")


def tokenize(line: str) -> List[str]:
    """
    Returns the ordered token list for one line of text.

    The result always has at least one element. Comment lines (leading ';')
    and label lines (leading ':') yield a single empty token, so callers can
    skip them by checking tokens[0].
    """
    if line is None:
        return [""]
    stripped = line.lstrip(" \t")
    if not stripped or stripped[0] in (";", ":"):
        return [""]

    tokens: List[str] = []
    buf: List[str] = []
    started = False      # a token is open (possibly empty, e.g. '')
    quote = None         # active quote character
    i = 0
    n = len(stripped)
    while i < n:
        ch = stripped[i]
        if quote is not None:
            if ch == "\\" and i + 1 < n and stripped[i + 1] == quote:
                buf.append(quote)
                i += 2
                continue
            if ch == quote:
                quote = None
            else:
                buf.append(ch)
            i += 1
            continue

        if ch in _QUOTES:
            quote = ch
            started = True
        elif ch in _BLANKS:
            if started:
                tokens.append("".join(buf))
                buf = []
                started = False
        elif ch == ";":
            # Trailing comment; drop the rest of the line.
            break
        else:
            buf.append(ch)
            started = True
        i += 1

    # An unterminated quote truncates the line at the open token.
    if started and quote is None:
        tokens.append("".join(buf))
    if not tokens:
        return [""]
    return tokens


def quote_token(token: str) -> str:
    """Quotes a token when tokenizing it bare would not give it back."""
    if token == "":
        return '""'
    if any(c in token for c in (" ", "\t", ";", "'", '"')) or token[0] == ":":
        # A backslash before the closing quote would escape it, so trailing
        # backslashes go after the quoted span, where they are literal.
        head = token.rstrip("\\")
        tail = token[len(head):]
        if '"' not in head:
            return '"' + head + '"' + tail
        if "'" not in head:
            return "'" + head + "'" + tail
        return '"' + head.replace('"', '\\"') + '"' + tail
    return token


def join_tokens(tokens: List[str]) -> str:
    return " ".join(quote_token(t) for t in tokens)


def csv_parse(text: str) -> List[str]:
    """Splits a comma separated value, honoring double quotes."""
    if not text:
        return []
    rows = list(csv.reader([text], skipinitialspace=False))
    return rows[0] if rows else []


__all__ = [
    "tokenize",
    "quote_token",
    "join_tokens",
    "csv_parse",
]
