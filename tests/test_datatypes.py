import threading

import pytest

from certsh.certsh_datatypes import (
    AUTO, GLOBAL, LOCAL,
    Variable, VariableTable, Frame, CallStack, InterpreterContext,
)


# --- VariableTable ---

def test_table_set_get_remove():
    table = VariableTable()
    table.set("a", "1")
    assert "a" in table
    assert table.get("a").value == "1"
    assert table.remove("a") is True
    assert table.remove("a") is False
    assert table.get("a") is None


def test_table_keeps_byte_length_on_plain_update():
    table = VariableTable()
    table.set("buf", "0x1000", byte_length=512)
    table.set("buf", "0x2000")
    var = table.get("buf")
    assert var.value == "0x2000"
    assert var.byte_length == 512


def test_table_rejects_empty_key():
    with pytest.raises(KeyError):
        VariableTable().set("", "x")


def test_non_string_key_is_not_contained():
    assert 3 not in VariableTable()


# --- CallStack ---

def test_base_frame_is_never_popped():
    stack = CallStack()
    assert stack.pop() is None
    assert len(stack) == 1
    stack.push(Frame(name="s", lines=["echo"]))
    assert stack.depth == 1
    assert stack.pop().name == "s"
    assert stack.pop() is None


def test_frame_index_is_clamped():
    stack = CallStack(Frame(args=["prog"]))
    top = stack.push(Frame(name="t", lines=[]))
    assert stack.frame(-5) is stack.base
    assert stack.frame(99) is top
    assert stack.frame(1) is top


def test_user_args_skip_the_name():
    assert Frame(args=["script", "a", "b"]).user_args == ["a", "b"]


# --- Scoping ---

def test_local_lookup_precedes_global():
    ctx = InterpreterContext()
    stack = CallStack()
    ctx.assign("x", "global", stack, GLOBAL)
    ctx.assign("x", "local", stack, LOCAL)
    assert ctx.lookup("x", stack).value == "local"
    stack.push(Frame(name="s", lines=[]))
    assert ctx.lookup("x", stack).value == "global"


def test_auto_updates_existing_global():
    ctx = InterpreterContext()
    stack = CallStack()
    ctx.assign("g", "1", stack, GLOBAL)
    stack.push(Frame(name="s", lines=[]))
    ctx.assign("g", "2", stack, AUTO)
    assert ctx.get_global("g").value == "2"
    assert "g" not in stack.top.locals


def test_auto_creates_new_keys_as_locals():
    ctx = InterpreterContext()
    stack = CallStack()
    stack.push(Frame(name="s", lines=[]))
    var = ctx.assign("fresh", "v", stack, AUTO)
    assert var.scope == LOCAL
    assert not ctx.has_global("fresh")
    stack.pop()
    assert ctx.lookup("fresh", stack) is None


def test_auto_prefers_existing_local_over_global():
    ctx = InterpreterContext()
    stack = CallStack()
    ctx.assign("k", "g", stack, GLOBAL)
    ctx.assign("k", "l", stack, LOCAL)
    ctx.assign("k", "new", stack, AUTO)
    assert stack.top.locals.get("k").value == "new"
    assert ctx.get_global("k").value == "g"


def test_unassign_auto_removes_local_first():
    ctx = InterpreterContext()
    stack = CallStack()
    ctx.assign("k", "g", stack, GLOBAL)
    ctx.assign("k", "l", stack, LOCAL)
    assert ctx.unassign("k", stack) is True
    assert ctx.lookup("k", stack).value == "g"
    assert ctx.unassign("k", stack) is True
    assert ctx.lookup("k", stack) is None


def test_unknown_scope_is_rejected():
    with pytest.raises(ValueError):
        InterpreterContext().assign("k", "v", CallStack(), "elsewhere")


def test_get_global_returns_a_snapshot():
    ctx = InterpreterContext()
    ctx.set_global("k", "v")
    snap = ctx.get_global("k")
    snap.value = "changed"
    assert ctx.get_global("k").value == "v"
    assert isinstance(snap, Variable)


def test_globals_survive_concurrent_writers():
    ctx = InterpreterContext()

    def writer(prefix):
        for i in range(200):
            ctx.set_global(f"{prefix}{i}", str(i))

    threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(ctx.global_items()) == 800
