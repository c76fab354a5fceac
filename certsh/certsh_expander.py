"""
Placeholder expansion for certsh command tokens.

A placeholder has the form ${source:argument}. Placeholders nest, and inner
ones are resolved first, so ${get:${arg:1}} reads the variable named by the
first argument. Resolved text that holds placeholders of its own is expanded
again, up to the depth limit. Every resolver returns a string; anything that
cannot be resolved becomes the empty string.
"""
import datetime
import os
import sys
from typing import Callable, Dict, List, Optional

from certsh.certsh_datatypes import CallStack, InterpreterContext
from certsh.certsh_json import JsonLookup
from certsh.certsh_tokenizer import csv_parse

DEFAULT_MAX_DEPTH = 64

# (argument, stack) -> text
Resolver = Callable[[str, CallStack], Optional[str]]


def find_closing(text: str, start: int) -> int:
    """
    Returns the index of the '}' closing the placeholder whose '${' sits at
    start, or -1 if it is unterminated.
    """
    depth = 0
    i = start
    n = len(text)
    while i < n:
        if text.startswith("${", i):
            depth += 1
            i += 2
            continue
        if text[i] == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def platform_name() -> str:
    if sys.platform.startswith("win"):
        return "WINDOWS"
    if sys.platform == "darwin":
        return "MACOSX"
    return "LINUX"


class Expander:
    """Resolves placeholders against the call stack and registered resolvers."""

    def __init__(self, context: InterpreterContext,
                 resolvers: Optional[Dict[str, Callable[[str], Optional[str]]]] = None,
                 max_depth: int = DEFAULT_MAX_DEPTH,
                 program: str = "certsh",
                 version: str = "",
                 debug: Optional[Callable[..., None]] = None):
        self.context = context
        self.max_depth = max_depth
        self.program = program
        self.version = version
        self._dbg = debug or (lambda *parts: None)
        self._builtin: Dict[str, Resolver] = {
            "arg": self._arg,
            "get": self._get,
            "getindex": self._getindex,
            "bytes": self._bytes,
            "ret": self._ret,
            "sts": self._sts,
            "depth": lambda arg, stack: str(stack.depth),
            "localtime": self._localtime,
            "gmtime": self._gmtime,
            "env": lambda arg, stack: os.environ.get(arg, ""),
            "platform": lambda arg, stack: platform_name(),
            "pwd": lambda arg, stack: os.getcwd(),
            "program": lambda arg, stack: self.program,
            "version": lambda arg, stack: self.version,
            "json": self._json,
            "jsonkey": self._jsonkey,
            "jsontype": self._jsontype,
        }
        self._host: Dict[str, Callable[[str], Optional[str]]] = {}
        for name, func in (resolvers or {}).items():
            self.register(name, func)

    def register(self, name: str, func: Callable[[str], Optional[str]]):
        """Adds a host resolver. Host resolvers take precedence over built-ins."""
        self._host[name.lower()] = func

    def sources(self) -> List[str]:
        return sorted(set(self._builtin) | set(self._host))

    # --- expansion ---
    def expand(self, tokens: List[str], stack: CallStack) -> List[str]:
        return [self.expand_token(t, stack) for t in tokens]

    def expand_token(self, token: str, stack: CallStack, depth: int = 0) -> str:
        if "${" not in token:
            return token
        if depth >= self.max_depth:
            self._dbg("expansion depth limit reached", token)
            return token
        out = token
        pos = 0
        while True:
            start = out.find("${", pos)
            if start < 0:
                break
            end = find_closing(out, start)
            if end < 0:
                # Unterminated placeholders are left as they are.
                break
            inner = self.expand_token(out[start + 2:end], stack, depth + 1)
            value = self.resolve(inner, stack)
            out = out[:start] + value + out[end + 1:]
            if "${" not in value:
                pos = start + len(value)
                continue
            # Spliced text is scanned again, one level deeper.
            depth += 1
            if depth >= self.max_depth:
                self._dbg("expansion depth limit reached", token)
                break
            pos = start
        return out

    def resolve(self, inner: str, stack: CallStack) -> str:
        """Resolves 'source:argument' (the text between '${' and '}')."""
        source, _, arg = inner.partition(":")
        key = source.strip().lower()
        host = self._host.get(key)
        try:
            if host is not None:
                value = host(arg)
            else:
                builtin = self._builtin.get(key)
                if builtin is None:
                    self._dbg("unknown expansion source", source)
                    return ""
                value = builtin(arg, stack)
        except Exception as e:
            self._dbg("resolver failed", source, type(e).__name__, e)
            return ""
        return "" if value is None else str(value)

    # --- resolvers ---
    @staticmethod
    def _frame_and_rest(arg: str, stack: CallStack):
        """Splits an optional leading 'frameIndex:' off arg."""
        head, sep, rest = arg.partition(":")
        if sep:
            try:
                return stack.frame(int(head)), rest
            except ValueError:
                pass
        return stack.top, arg

    def _arg(self, arg: str, stack: CallStack) -> str:
        frame, which = self._frame_and_rest(arg, stack)
        which = which.strip()
        if which == "#":
            return str(len(frame.user_args))
        try:
            index = int(which)
        except ValueError:
            return ""
        if 0 <= index < len(frame.args):
            return frame.args[index]
        return ""

    def _get(self, arg: str, stack: CallStack) -> str:
        var = self.context.lookup(arg, stack)
        return var.value if var is not None else ""

    def _getindex(self, arg: str, stack: CallStack) -> str:
        key, _, index = arg.rpartition(":")
        if not key:
            return ""
        var = self.context.lookup(key, stack)
        if var is None:
            return ""
        try:
            i = int(index)
        except ValueError:
            return ""
        items = csv_parse(var.value)
        return items[i] if 0 <= i < len(items) else ""

    def _bytes(self, arg: str, stack: CallStack) -> str:
        var = self.context.lookup(arg, stack)
        if var is None or var.byte_length is None:
            return ""
        return str(var.byte_length)

    def _ret(self, arg: str, stack: CallStack) -> str:
        frame = stack.frame(int(arg)) if arg.strip().lstrip("-").isdigit() else stack.top
        return frame.ret

    def _sts(self, arg: str, stack: CallStack) -> str:
        frame = stack.frame(int(arg)) if arg.strip().lstrip("-").isdigit() else stack.top
        return frame.status

    def _localtime(self, arg: str, stack: CallStack) -> str:
        now = datetime.datetime.now()
        return now.strftime(arg) if arg else now.isoformat(timespec="milliseconds")

    def _gmtime(self, arg: str, stack: CallStack) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        return now.strftime(arg) if arg else now.isoformat(timespec="milliseconds")

    def _lookup_ret(self, stack: CallStack) -> Optional[JsonLookup]:
        lookup = JsonLookup()
        if not lookup.load(stack.top.ret, relaxed=True).ok:
            return None
        return lookup

    def _json(self, arg: str, stack: CallStack) -> str:
        lookup = self._lookup_ret(stack)
        if lookup is None:
            return ""
        return lookup.get(arg) or ""

    def _jsonkey(self, arg: str, stack: CallStack) -> str:
        path, *bounds = arg.split(":")
        lookup = self._lookup_ret(stack)
        if lookup is None:
            return "-1"
        try:
            start = int(bounds[0]) if len(bounds) > 0 and bounds[0] else 0
            count = int(bounds[1]) if len(bounds) > 1 and bounds[1] else None
        except ValueError:
            return "-1"
        return str(lookup.find_key(path, start, count))

    def _jsontype(self, arg: str, stack: CallStack) -> str:
        lookup = self._lookup_ret(stack)
        if lookup is None:
            return ""
        return lookup.get_type(arg) or ""


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "Expander",
    "find_closing",
    "platform_name",
]
