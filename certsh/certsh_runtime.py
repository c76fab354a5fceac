# certsh runtime

import asyncio
import inspect
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import pystache
import yaml

from certsh.certsh_config import Config
from certsh.certsh_datatypes import AUTO, GLOBAL, LOCAL, CallStack, Frame, InterpreterContext
from certsh.certsh_dispatch import CommandContext, Directive, Dispatcher, verb
from certsh.certsh_events import TIMEOUT
from certsh.certsh_expander import Expander
from certsh.certsh_json import JsonLookup
from certsh.certsh_tokenizer import join_tokens, tokenize

VERSION = "0.1.0"

# ===================================================================
# 1. Host binding
# ===================================================================


def resolver(*names: str):
    """A decorator to expose a host method as a placeholder source."""
    def mark(func):
        func._certsh_resolvers = tuple(n.lower() for n in names)
        return func
    return mark


class CertHost:
    """
    The base class for the object that connects certsh to a driver.

    @verb methods become commands (ahead of the built-ins, so a host can
    shadow them) and @resolver methods become placeholder sources. The
    driver's callback thread reports events with post_event.
    """
    def __init__(self):
        self.runner: Optional['ScriptRunner'] = None

    def post_event(self, name: str):
        if self.runner is not None:
            self.runner.context.events.post(name)


def collect_resolvers(obj) -> List[Tuple[str, Callable[[str], Any]]]:
    found = []
    for name, member in inspect.getmembers(obj):
        if not callable(member):
            continue
        names = getattr(member, "_certsh_resolvers", None)
        if not names:
            continue
        for n in names:
            found.append((n, member))
    return found


def find_label(lines: Optional[List[str]], label: str) -> int:
    """Returns the index of the line reading ':label', or -1."""
    if not lines or not label:
        return -1
    wanted = ":" + label
    for index, line in enumerate(lines):
        if line.strip() == wanted:
            return index
    return -1


def _to_int(text: str) -> Optional[int]:
    try:
        return int(text, 0)
    except (TypeError, ValueError):
        pass
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


def _compare(a: str, op: str, b: str) -> Optional[bool]:
    """Evaluates an 'if' condition. Returns None for an unknown operator."""
    if op == "~~":
        return b in a
    if op == "!~":
        return b not in a
    ia, ib = _to_int(a), _to_int(b)
    if op == "&":
        if ia is None or ib is None:
            return False
        return (ia & ib) != 0
    left, right = (ia, ib) if ia is not None and ib is not None else (a, b)
    match op:
        case "==":
            return left == right
        case "!=":
            return left != right
        case "<":
            return left < right
        case "<=":
            return left <= right
        case ">":
            return left > right
        case ">=":
            return left >= right
    return None


# ===================================================================
# 2. The Standard Library
# ===================================================================

class StdLib:
    """The built-in verbs. Each handler receives the command context."""

    def __init__(self, runner: 'ScriptRunner'):
        self.runner = runner
        self._help: Optional[Dict[str, Any]] = None

    @property
    def stack(self) -> CallStack:
        return self.runner.stack

    # --- Control flow ---
    @verb("goto")
    def _goto(self, ctx: CommandContext):
        if len(ctx.tokens) < 2:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}goto: missing label")
            return False
        ctx.goto(ctx.tokens[1])
        return False

    @verb("call")
    def _call(self, ctx: CommandContext):
        if len(ctx.tokens) < 2:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}call: missing label")
            return False
        ctx.call(ctx.tokens[1], ctx.tokens[2:])
        return False

    @verb("return")
    def _return(self, ctx: CommandContext):
        ctx.return_(ctx.tokens[1] if len(ctx.tokens) > 1 else "")
        return False

    @verb("if")
    def _if(self, ctx: CommandContext):
        toks = ctx.tokens
        if len(toks) < 5:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}if: expected 'if <a> <op> <b> <action> ...'")
            return False
        a, op, b, action = toks[1], toks[2], toks[3], toks[4].lower()
        outcome = _compare(a, op, b)
        if outcome is None:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}if: unknown operator {op!r}")
            return False
        if not outcome:
            return False
        match action:
            case "goto" if len(toks) > 5:
                ctx.goto(toks[5])
            case "call" if len(toks) > 5:
                ctx.call(toks[5], toks[6:])
            case "return":
                ctx.return_(toks[5] if len(toks) > 5 else "")
            case _:
                ctx.status = "error"
                self.runner.diagnostic(f"{ctx.where()}if: bad action {' '.join(toks[4:])!r}")
        return False

    @verb("run")
    def _run(self, ctx: CommandContext):
        return self._start_script(ctx, echo=False)

    @verb("runv")
    def _runv(self, ctx: CommandContext):
        return self._start_script(ctx, echo=True)

    def _start_script(self, ctx: CommandContext, echo: bool):
        if len(ctx.tokens) < 2:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}{ctx.tokens[0]}: missing script name")
            return False
        name = ctx.tokens[1]
        try:
            lines, source = self.runner.load_script(name)
        except OSError as e:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}{ctx.tokens[0]}: cannot read {name}: {e.strerror or e}")
            return False
        ctx.status = "success"
        ctx.ret = ""
        ctx.directive = Directive.RUN
        ctx.frame = Frame(name=source, lines=lines, args=[name] + ctx.tokens[2:], echo=echo)
        return False

    @verb("quit", "exit")
    def _quit(self, ctx: CommandContext):
        return True

    # --- Variables ---
    def _assign(self, ctx: CommandContext, scope: str):
        toks = ctx.tokens
        if len(toks) < 2:
            self._list_variables()
            return False
        key = toks[1]
        if len(toks) < 3:
            self.runner.context.unassign(key, self.stack, scope)
        else:
            self.runner.context.assign(key, toks[2], self.stack, scope)
        ctx.status = "success"
        return False

    def _list_variables(self):
        for key, var in self.stack.top.locals.items():
            self.runner.emit(["stdout"], f"local  {key}={join_tokens([var.value])}")
        for key, var in self.runner.context.global_items():
            self.runner.emit(["stdout"], f"global {key}={join_tokens([var.value])}")

    @verb("set")
    def _set(self, ctx: CommandContext):
        return self._assign(ctx, AUTO)

    @verb("setlocal")
    def _setlocal(self, ctx: CommandContext):
        return self._assign(ctx, LOCAL)

    @verb("setglobal")
    def _setglobal(self, ctx: CommandContext):
        return self._assign(ctx, GLOBAL)

    @verb("increment")
    def _increment(self, ctx: CommandContext):
        toks = ctx.tokens
        if len(toks) < 3:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}increment: expected 'increment <dst> <src> [step]'")
            return False
        value = _to_int(toks[2])
        step = _to_int(toks[3]) if len(toks) > 3 else 1
        if value is None or step is None:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}increment: not a number")
            return False
        self.runner.context.assign(toks[1], str(value + step), self.stack, AUTO)
        ctx.status = "success"
        return False

    # --- Output ---
    @verb("echo")
    def _echo(self, ctx: CommandContext):
        self.runner.emit(["stdout"], " ".join(ctx.tokens[1:]))
        return False

    @verb("echo.pass")
    def _echo_pass(self, ctx: CommandContext):
        self.runner.emit(["stdout"], " ".join(["PASS"] + ctx.tokens[1:]))
        return False

    @verb("echo.fail")
    def _echo_fail(self, ctx: CommandContext):
        self.runner.emit(["stdout"], " ".join(["FAIL"] + ctx.tokens[1:]))
        return False

    # --- JSON ---
    @verb("json")
    def _json(self, ctx: CommandContext):
        return self._json_command(ctx, relaxed=True)

    @verb("json.strict")
    def _json_strict(self, ctx: CommandContext):
        return self._json_command(ctx, relaxed=False)

    def _json_command(self, ctx: CommandContext, relaxed: bool):
        toks = ctx.tokens
        if len(toks) < 3:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}{toks[0]}: expected '{toks[0]} <get|type|key|dump|xml> <text> ...'")
            return False
        action = toks[1].lower()
        lookup = JsonLookup()
        parsed = lookup.load(toks[2], relaxed=relaxed)
        if not parsed.ok:
            ctx.status = "error"
            ctx.ret = str(parsed.error_offset)
            self.runner.diagnostic(f"{ctx.where()}{toks[0]}: {parsed.format_error()}")
            return False
        found: Optional[str]
        match action:
            case "get":
                found = lookup.get(toks[3] if len(toks) > 3 else "")
            case "type":
                found = lookup.get_type(toks[3] if len(toks) > 3 else "")
            case "key":
                start = _to_int(toks[4]) if len(toks) > 4 else 0
                count = _to_int(toks[5]) if len(toks) > 5 else None
                if start is None or (len(toks) > 5 and count is None):
                    ctx.status = "error"
                    ctx.ret = ""
                    self.runner.diagnostic(f"{ctx.where()}{toks[0]}: key: not a number")
                    return False
                index = lookup.find_key(toks[3] if len(toks) > 3 else "", start, count)
                found = str(index) if index >= 0 else None
            case "dump":
                for item in toks[3:]:
                    path, sep, literal = item.partition("=")
                    if sep:
                        lookup.override(path, literal)
                found = lookup.dump()
            case "xml":
                found = lookup.to_xml(toks[3] if len(toks) > 3 else None)
            case _:
                ctx.status = "error"
                self.runner.diagnostic(f"{ctx.where()}{toks[0]}: unknown action {action!r}")
                return False
        if found is None:
            ctx.status = "notfound"
            ctx.ret = ""
        else:
            ctx.status = "success"
            ctx.ret = found
        return False

    # --- Events and timing ---
    @verb("wait")
    async def _wait(self, ctx: CommandContext):
        toks = ctx.tokens
        events = self.runner.context.events
        if len(toks) > 1 and toks[1].lower() == "reset":
            events.reset()
            ctx.status = "success"
            ctx.ret = ""
            return False
        timeout = _to_int(toks[1]) if len(toks) > 1 else 0
        if timeout is None:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}wait: bad timeout {toks[1]!r}")
            return False
        ctx.ret = await events.await_events(timeout)
        ctx.status = "timeout" if ctx.ret == TIMEOUT else "success"
        return False

    @verb("sleep")
    async def _sleep(self, ctx: CommandContext):
        ms = _to_int(ctx.tokens[1]) if len(ctx.tokens) > 1 else 0
        if ms is None or ms < 0:
            ctx.status = "error"
            self.runner.diagnostic(f"{ctx.where()}sleep: bad duration")
            return False
        await asyncio.sleep(ms / 1000.0)
        return False

    # --- Information ---
    @verb("config")
    def _config(self, ctx: CommandContext):
        if len(ctx.tokens) > 1:
            value = self.runner.config.get(ctx.tokens[1])
            ctx.status = "success" if value is not None else "notfound"
            ctx.ret = "" if value is None else str(value)
            return False
        self.runner.emit(["stdout"], self.runner.config.dumps().rstrip("\n"))
        return False

    @verb("help")
    def _help_verb(self, ctx: CommandContext):
        catalog = self._help_catalog()
        context = {
            "program": self.runner.program,
            "version": VERSION,
            "verbs": self.runner.dispatcher.verbs(),
            "sources": self.runner.expander.sources(),
        }
        renderer = pystache.Renderer(escape=lambda u: u)
        if len(ctx.tokens) > 1:
            topic = ctx.tokens[1].lower()
            if topic in ("exit",):
                topic = "quit"
            if topic.startswith("echo."):
                topic = "echo"
            if topic == "json.strict":
                topic = "json"
            text = (catalog.get("verbs") or {}).get(topic)
            if text is None:
                ctx.status = "notfound"
                self.runner.emit(["stdout"], f"no help for {ctx.tokens[1]}")
                return False
        else:
            text = catalog.get("summary", "")
        self.runner.emit(["stdout"], renderer.render(text, context).rstrip("\n"))
        ctx.status = "success"
        return False

    def _help_catalog(self) -> Dict[str, Any]:
        if self._help is None:
            path = Path(__file__).parent / "help.yaml"
            self._help = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return self._help


# ===================================================================
# 3. Script Execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of running a line or a script."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    terminated: bool = False
    side_effects: List[Dict] = field(default_factory=list)

    @property
    def diagnostics(self) -> List[str]:
        return [e.get('message', '') for e in self.side_effects if e.get('topics') == ['stderr']]

    @property
    def output(self) -> List[str]:
        return [e.get('message', '') for e in self.side_effects if e.get('topics') == ['stdout']]

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return str(self.error_message or "Unknown error")


class ScriptRunner:
    """Tokenizes, expands, dispatches and sequences certsh commands."""

    def __init__(self,
                 host_object: Optional[CertHost] = None,
                 args: Optional[List[str]] = None,
                 config: Optional[Config] = None,
                 output: Optional[Callable[[Dict], None]] = None,
                 load_script: Optional[Callable[[str], Tuple[List[str], str]]] = None):
        self.config = config or Config()
        self.host_object = host_object
        self.output = output
        self.side_effects: List[Dict] = []
        self.terminated = False
        self.program = str(self.config.get("executableName", "certsh"))

        # Shared with the driver's callback thread; see InterpreterContext.
        self.context = InterpreterContext()
        program_args = list(args) if args is not None else list(self.config.args)
        self.stack = CallStack(Frame(name=None, lines=None, args=[self.program] + program_args))

        self.expander = Expander(
            self.context,
            max_depth=self.config.get("maxExpansionDepth", 64),
            program=self.program,
            version=VERSION,
            debug=self._dbg,
        )
        self.dispatcher = Dispatcher(report=self.diagnostic)
        self.stdlib = StdLib(self)
        self._load_script = load_script

        # Host verbs are registered first so they shadow the built-ins.
        if host_object is not None:
            host_object.runner = self
            self.dispatcher.register_object(host_object)
            for name, func in collect_resolvers(host_object):
                self.expander.register(name, func)
        self.dispatcher.register_object(self.stdlib)

    # --- effects and tracing ---
    def emit(self, topics: List[str], message: str):
        effect = {'topics': list(topics), 'message': message}
        self.side_effects.append(effect)
        if self.output is not None:
            self.output(effect)

    def diagnostic(self, message: str):
        self.emit(['stderr'], message)

    def _dbg(self, *parts):
        if os.environ.get("CERTSH_DEBUG") or self.config.get("logLevel", 0) > 1:
            try:
                print("[DBG]", *parts, file=sys.stderr)
            except (OSError, ValueError):
                pass

    # --- variables for hosts ---
    def assign(self, key: str, value: str, scope: str = AUTO, byte_length: Optional[int] = None):
        return self.context.assign(key, value, self.stack, scope, byte_length)

    def lookup(self, key: str) -> Optional[str]:
        var = self.context.lookup(key, self.stack)
        return var.value if var is not None else None

    # --- scripts ---
    def load_script(self, name: str) -> Tuple[List[str], str]:
        """Returns (lines, source name). Raises OSError when the script cannot be read."""
        if self._load_script is not None:
            return self._load_script(name)
        path = Path(name)
        if not path.is_absolute():
            folder = self.config.get("scriptFolder", "")
            if folder:
                path = Path(folder) / path
        text = path.read_text(encoding="utf-8")
        return text.splitlines(), name

    # --- execution ---
    def _apply(self, ctx: CommandContext, frame: Frame):
        match ctx.directive:
            case Directive.NEXT:
                frame.line += 1
            case Directive.GOTO:
                index = find_label(frame.lines, ctx.target)
                if index < 0:
                    self.diagnostic(f"{ctx.where()}goto: label not found: {ctx.target}")
                    frame.line += 1
                else:
                    frame.line = index + 1
            case Directive.CALL:
                index = find_label(frame.lines, ctx.target)
                if index < 0:
                    self.diagnostic(f"{ctx.where()}call: label not found: {ctx.target}")
                    frame.line += 1
                else:
                    # The caller stays on the call line until the callee returns.
                    self.stack.push(Frame(name=frame.name, lines=frame.lines,
                                          args=[ctx.target] + ctx.call_args,
                                          line=index + 1, echo=frame.echo))
            case Directive.RUN:
                self.stack.push(ctx.frame)
            case Directive.RETURN:
                self._return_from(frame, ctx.ret)

    def _return_from(self, frame: Frame, value: str):
        if frame is not self.stack.top or self.stack.pop() is None:
            # Nothing to leave at the base frame.
            frame.ret = value
            return
        caller = self.stack.top
        caller.ret = value
        caller.line += 1

    async def _step(self, line: str, frame: Frame) -> bool:
        """Runs one line in frame. Returns True when the program should end."""
        tokens = tokenize(line)
        if tokens[0] == "":
            frame.line += 1
            return False
        tokens = self.expander.expand(tokens, self.stack)
        in_script = frame.lines is not None
        ctx = CommandContext(status=frame.status, ret=frame.ret,
                             line=frame.line, source=frame.name if in_script else None)
        terminate = await self.dispatcher.dispatch(tokens, ctx)
        frame.status = ctx.status
        if ctx.directive is not Directive.RETURN:
            frame.ret = ctx.ret
        if terminate:
            return True
        self._apply(ctx, frame)
        return False

    async def _run_until(self, floor: int) -> bool:
        """Runs the frames above floor until they have all returned."""
        while len(self.stack) > floor:
            frame = self.stack.top
            if frame.lines is None or frame.line >= len(frame.lines):
                # Running off the end is a return without a value.
                self._return_from(frame, "")
                continue
            line = frame.lines[frame.line]
            if frame.echo:
                self.emit(['stdout'], f"{frame.name}:{frame.line + 1}> {line}")
            if await self._step(line, frame):
                self.terminated = True
                while len(self.stack) > floor:
                    self.stack.pop()
                return True
        return False

    def _result(self) -> ExecutionResult:
        return ExecutionResult(
            status='success',
            value=self.stack.top.ret,
            terminated=self.terminated,
            side_effects=self.side_effects,
        )

    def _failure(self, e: Exception, floor: int) -> ExecutionResult:
        msg = f"InternalError: {type(e).__name__}: {e}"
        self.diagnostic(msg)
        while len(self.stack) > floor:
            self.stack.pop()
        return ExecutionResult(status='error', error_message=msg,
                               terminated=self.terminated, side_effects=self.side_effects)

    async def handle_line(self, line: str) -> ExecutionResult:
        """Runs one interactive command at the base frame."""
        self.side_effects = []
        floor = len(self.stack)
        frame = self.stack.top
        try:
            if await self._step(line, frame):
                self.terminated = True
            elif len(self.stack) > floor:
                # The command started a script; run it to completion.
                await self._run_until(floor)
        except Exception as e:
            return self._failure(e, floor)
        return self._result()

    async def handle_script(self, source: str, name: str = "script", args: Optional[List[str]] = None) -> ExecutionResult:
        """Runs source as a script in a new frame and returns its return value."""
        self.side_effects = []
        floor = len(self.stack)
        lines = source.splitlines()
        self.stack.push(Frame(name=name, lines=lines, args=[name] + list(args or [])))
        try:
            await self._run_until(floor)
        except Exception as e:
            return self._failure(e, floor)
        return self._result()

    async def run_file(self, path: str, args: Optional[List[str]] = None) -> ExecutionResult:
        self.side_effects = []
        try:
            lines, source = self.load_script(path)
        except OSError as e:
            msg = f"cannot read {path}: {e.strerror or e}"
            self.diagnostic(msg)
            return ExecutionResult(status='error', error_message=msg, side_effects=self.side_effects)
        return await self.handle_script("\n".join(lines), name=source, args=args)

    def post_event(self, name: str):
        """Queues a driver event. Safe to call from any thread."""
        self.context.events.post(name)


__all__ = [
    "VERSION",
    "CertHost",
    "resolver",
    "verb",
    "find_label",
    "StdLib",
    "ExecutionResult",
    "ScriptRunner",
]
