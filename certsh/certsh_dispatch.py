"""
Verb lookup and invocation.

A Dispatcher holds an ordered list of (verb names, handler) pairs. The first
entry whose names contain the verb (case-insensitively) handles the command.
"""
import enum
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Tuple


class Directive(enum.Enum):
    """What the interpreter does after a command."""
    NEXT = "next"
    GOTO = "goto"
    CALL = "call"
    RUN = "run"
    RETURN = "return"


@dataclass
class CommandContext:
    """
    The mutable state a verb handler works on.

    Handlers set status/ret, and request a control transfer by setting
    directive (plus target/call_args for GOTO and CALL, frame for RUN).
    """
    status: str = "success"
    ret: str = ""
    directive: Directive = Directive.NEXT
    target: Optional[str] = None
    call_args: List[str] = field(default_factory=list)
    line: int = 0
    source: Optional[str] = None
    tokens: List[str] = field(default_factory=list)
    frame: Optional[Any] = None

    def goto(self, label: str):
        self.directive = Directive.GOTO
        self.target = label

    def call(self, label: str, args: Iterable[str] = ()):
        self.directive = Directive.CALL
        self.target = label
        self.call_args = list(args)

    def return_(self, value: str = ""):
        self.directive = Directive.RETURN
        self.ret = value

    def where(self) -> str:
        """'source:line: ' inside a script, '' at the prompt."""
        if self.source is None:
            return ""
        return f"{self.source}:{self.line + 1}: "


Handler = Callable[[CommandContext], Any]


def verb(*names: str):
    """A decorator to register a method as the handler for one or more verbs."""
    def mark(func):
        func._certsh_verbs = tuple(n.lower() for n in names)
        return func
    return mark


def collect_verbs(obj) -> List[Tuple[Tuple[str, ...], Handler]]:
    """Finds @verb methods on obj, in definition order."""
    found = []
    seen = set()
    for klass in type(obj).__mro__:
        for name, member in vars(klass).items():
            if name in seen:
                continue
            names = getattr(member, "_certsh_verbs", None)
            if not names:
                continue
            seen.add(name)
            found.append((names, getattr(obj, name)))
    return found


class Dispatcher:
    """Maps a command's verb to its handler."""

    def __init__(self, report: Optional[Callable[[str], None]] = None):
        self._entries: List[Tuple[frozenset, Handler]] = []
        self._report = report

    def register(self, names: Iterable[str], handler: Handler):
        names = frozenset(n.lower() for n in names)
        if not names:
            raise ValueError("a handler needs at least one verb name")
        self._entries.append((names, handler))

    def register_object(self, obj):
        for names, handler in collect_verbs(obj):
            self.register(names, handler)

    def lookup(self, name: str) -> Optional[Handler]:
        key = (name or "").lower()
        for names, handler in self._entries:
            if key in names:
                return handler
        return None

    def verbs(self) -> List[str]:
        out = []
        for names, _ in self._entries:
            for n in sorted(names):
                if n not in out:
                    out.append(n)
        return out

    def _diagnostic(self, message: str):
        if self._report is not None:
            self._report(message)

    async def dispatch(self, tokens: List[str], ctx: CommandContext) -> bool:
        """
        Runs the handler for tokens[0]. Returns True when the handler asks
        the program to terminate. Unknown verbs and failing handlers are
        reported and never propagate.
        """
        ctx.tokens = tokens
        verb_name = tokens[0] if tokens else ""
        handler = self.lookup(verb_name)
        if handler is None:
            ctx.status = "error"
            self._diagnostic(f"{ctx.where()}unrecognized command: {verb_name}")
            return False
        try:
            result = handler(ctx)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            ctx.status = "error"
            ctx.directive = Directive.NEXT
            self._diagnostic(f"{ctx.where()}{verb_name}: {type(e).__name__}: {e}")
            return False
        return bool(result)


__all__ = [
    "Directive",
    "CommandContext",
    "Dispatcher",
    "verb",
    "collect_verbs",
]
