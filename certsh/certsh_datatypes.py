
"""
Defines the core data types for the certsh interpreter.

This module provides the variable tables, the call-stack frames and the
interpreter context that owns the state shared with the protocol layer.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from certsh.certsh_events import EventQueue

LOCAL = "local"
GLOBAL = "global"
AUTO = "auto"


# =================================================================
# Variables
# =================================================================

@dataclass
class Variable:
    """One variable entry. byte_length tracks the size of a raw buffer
    attached to a handle-like value, when there is one."""
    key: str
    value: str = ""
    byte_length: Optional[int] = None
    scope: str = LOCAL


class VariableTable:
    """An ordered key -> Variable table for one scope."""

    def __init__(self, scope: str = LOCAL):
        self.scope = scope
        self.bindings: Dict[str, Variable] = {}

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key in self.bindings

    def __len__(self) -> int:
        return len(self.bindings)

    def get(self, key: str) -> Optional[Variable]:
        return self.bindings.get(key)

    def set(self, key: str, value: str, byte_length: Optional[int] = None) -> Variable:
        if not isinstance(key, str) or not key:
            raise KeyError("variable key must be a non-empty string")
        var = self.bindings.get(key)
        if var is None:
            var = Variable(key, str(value), byte_length, self.scope)
            self.bindings[key] = var
        else:
            var.value = str(value)
            # Plain assignments keep an existing buffer size.
            if byte_length is not None:
                var.byte_length = byte_length
        return var

    def remove(self, key: str) -> bool:
        return self.bindings.pop(key, None) is not None

    def items(self) -> List[Tuple[str, Variable]]:
        return list(self.bindings.items())

    def __repr__(self) -> str:
        return f"VariableTable({self.scope}, {list(self.bindings)})"


# =================================================================
# Call stack
# =================================================================

@dataclass
class Frame:
    """
    One activation record: a running script, a call target, or the base
    (interactive) frame.

    args[0] is the script or label name; the rest are the user arguments.
    lines is None for the base frame.
    """
    name: Optional[str] = None
    lines: Optional[List[str]] = None
    args: List[str] = field(default_factory=list)
    line: int = 0
    status: str = "success"
    ret: str = ""
    locals: VariableTable = field(default_factory=VariableTable)
    echo: bool = False

    @property
    def user_args(self) -> List[str]:
        return self.args[1:]


class CallStack:
    """A stack of frames. The base frame is created up front and never removed."""

    def __init__(self, base: Optional[Frame] = None):
        self.frames: List[Frame] = [base if base is not None else Frame()]

    def __len__(self) -> int:
        return len(self.frames)

    def __iter__(self) -> Iterator[Frame]:
        return iter(self.frames)

    @property
    def top(self) -> Frame:
        return self.frames[-1]

    @property
    def base(self) -> Frame:
        return self.frames[0]

    @property
    def depth(self) -> int:
        """Number of frames above the base frame."""
        return len(self.frames) - 1

    def push(self, frame: Frame) -> Frame:
        self.frames.append(frame)
        return frame

    def pop(self) -> Optional[Frame]:
        if len(self.frames) <= 1:
            return None
        return self.frames.pop()

    def frame(self, index: int) -> Frame:
        """Returns the frame at index, clamped to a valid position."""
        index = max(0, min(int(index), len(self.frames) - 1))
        return self.frames[index]


# =================================================================
# Interpreter context
# =================================================================

class InterpreterContext:
    """
    Owns the state shared with the protocol layer: the global variables and
    the pending-event list. Both sit behind one lock; everything else the
    interpreter touches stays on the foreground thread.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.globals = VariableTable(GLOBAL)
        self.events = EventQueue(self._lock)

    # --- globals ---
    def get_global(self, key: str) -> Optional[Variable]:
        with self._lock:
            var = self.globals.get(key)
            if var is None:
                return None
            return Variable(var.key, var.value, var.byte_length, var.scope)

    def set_global(self, key: str, value: str, byte_length: Optional[int] = None) -> Variable:
        with self._lock:
            return self.globals.set(key, value, byte_length)

    def remove_global(self, key: str) -> bool:
        with self._lock:
            return self.globals.remove(key)

    def has_global(self, key: str) -> bool:
        with self._lock:
            return key in self.globals

    def global_items(self) -> List[Tuple[str, Variable]]:
        with self._lock:
            return self.globals.items()

    # --- scoped access ---
    def lookup(self, key: str, stack: CallStack) -> Optional[Variable]:
        """Local (top frame) first, then global."""
        var = stack.top.locals.get(key)
        if var is not None:
            return var
        return self.get_global(key)

    def assign(self, key: str, value: str, stack: CallStack, scope: str = AUTO,
               byte_length: Optional[int] = None) -> Variable:
        """
        Writes a variable. 'auto' updates an existing local, else an existing
        global, and creates new keys as locals.
        """
        if scope == GLOBAL:
            return self.set_global(key, value, byte_length)
        if scope == AUTO:
            if key not in stack.top.locals:
                with self._lock:
                    if key in self.globals:
                        return self.globals.set(key, value, byte_length)
        elif scope != LOCAL:
            raise ValueError(f"unknown variable scope: {scope!r}")
        return stack.top.locals.set(key, value, byte_length)

    def unassign(self, key: str, stack: CallStack, scope: str = AUTO) -> bool:
        if scope == GLOBAL:
            return self.remove_global(key)
        if scope == LOCAL:
            return stack.top.locals.remove(key)
        if stack.top.locals.remove(key):
            return True
        return self.remove_global(key)


__all__ = [
    "LOCAL", "GLOBAL", "AUTO",
    "Variable", "VariableTable",
    "Frame", "CallStack",
    "InterpreterContext",
]
