import os

import pytest

from certsh.certsh_datatypes import CallStack, Frame, InterpreterContext, GLOBAL, LOCAL
from certsh.certsh_expander import Expander, find_closing, platform_name


@pytest.fixture
def env():
    ctx = InterpreterContext()
    stack = CallStack(Frame(args=["certsh", "base-arg"]))
    return ctx, stack, Expander(ctx, program="certsh", version="9.9")


def test_find_closing():
    assert find_closing("${a:b}", 0) == 5
    assert find_closing("x${a:${b:c}}y", 1) == 11
    assert find_closing("${a:b", 0) == -1


def test_text_without_placeholders_is_unchanged(env):
    ctx, stack, exp = env
    assert exp.expand_token("plain $ text {}", stack) == "plain $ text {}"


def test_get_after_setlocal(env):
    ctx, stack, exp = env
    ctx.assign("x", "hello", stack, LOCAL)
    assert exp.expand_token("${get:x}", stack) == "hello"
    assert exp.expand_token("<${get:x}>-<${get:x}>", stack) == "<hello>-<hello>"


def test_unknown_variable_and_source_give_empty(env):
    ctx, stack, exp = env
    assert exp.expand_token("[${get:nope}]", stack) == "[]"
    assert exp.expand_token("[${nosuch:thing}]", stack) == "[]"


def test_nested_placeholders_resolve_inside_out(env):
    ctx, stack, exp = env
    ctx.assign("name", "target", stack, GLOBAL)
    ctx.assign("target", "value", stack, GLOBAL)
    assert exp.expand_token("${get:${get:name}}", stack) == "value"


def test_resolved_text_is_expanded_again(env):
    ctx, stack, exp = env
    ctx.assign("ptr", "${get:other}", stack, LOCAL)
    ctx.assign("other", "boom", stack, LOCAL)
    assert exp.expand_token("${get:ptr}", stack) == "boom"
    assert exp.expand_token("pre-${get:ptr}-post ${get:other}", stack) == "pre-boom-post boom"


def test_resolved_text_chains_through_several_variables(env):
    ctx, stack, exp = env
    ctx.assign("a", "${get:b}", stack, LOCAL)
    ctx.assign("b", "[${get:c}]", stack, LOCAL)
    ctx.assign("c", "end", stack, LOCAL)
    assert exp.expand_token("${get:a}", stack) == "[end]"


def test_self_reference_stops_at_the_depth_limit():
    ctx = InterpreterContext()
    stack = CallStack()
    traces = []
    exp = Expander(ctx, max_depth=5, debug=lambda *parts: traces.append(parts))
    ctx.assign("x", "${get:x}", stack, LOCAL)
    assert exp.expand_token("${get:x}", stack) == "${get:x}"
    assert traces == [("expansion depth limit reached", "${get:x}")]


def test_unterminated_placeholder_is_left_verbatim(env):
    ctx, stack, exp = env
    ctx.assign("x", "1", stack, LOCAL)
    assert exp.expand_token("${get:x} ${get:x", stack) == "1 ${get:x"


def test_placeholders_past_the_depth_limit_stay_unexpanded():
    ctx = InterpreterContext()
    stack = CallStack()
    exp = Expander(ctx, max_depth=1)
    ctx.assign("a", "A", stack, LOCAL)
    ctx.assign("${get:a}", "unexpanded", stack, LOCAL)
    assert exp.expand_token("${get:a}", stack) == "A"
    assert exp.expand_token("${get:${get:a}}", stack) == "unexpanded"


def test_arg_with_count_and_frame_index(env):
    ctx, stack, exp = env
    stack.push(Frame(name="s", lines=[], args=["s", "one", "two"]))
    assert exp.expand_token("${arg:0}", stack) == "s"
    assert exp.expand_token("${arg:2}", stack) == "two"
    assert exp.expand_token("${arg:3}", stack) == ""
    assert exp.expand_token("${arg:#}", stack) == "2"
    assert exp.expand_token("${arg:0:1}", stack) == "base-arg"
    assert exp.expand_token("${arg:0:#}", stack) == "1"
    assert exp.expand_token("${arg:x}", stack) == ""


def test_ret_sts_and_depth(env):
    ctx, stack, exp = env
    stack.base.ret = "base-ret"
    stack.push(Frame(name="s", lines=[], ret="top-ret", status="notfound"))
    assert exp.expand_token("${ret:}", stack) == "top-ret"
    assert exp.expand_token("${ret:0}", stack) == "base-ret"
    assert exp.expand_token("${sts:}", stack) == "notfound"
    assert exp.expand_token("${depth:}", stack) == "1"


def test_getindex_and_bytes(env):
    ctx, stack, exp = env
    ctx.assign("row", 'a,"b,c",d', stack, LOCAL)
    ctx.assign("buf", "0x10", stack, LOCAL, byte_length=64)
    assert exp.expand_token("${getindex:row:1}", stack) == "b,c"
    assert exp.expand_token("${getindex:row:9}", stack) == ""
    assert exp.expand_token("${bytes:buf}", stack) == "64"
    assert exp.expand_token("${bytes:row}", stack) == ""


def test_environment_sources(env, monkeypatch):
    ctx, stack, exp = env
    monkeypatch.setenv("CERTSH_TEST_VALUE", "from-env")
    assert exp.expand_token("${env:CERTSH_TEST_VALUE}", stack) == "from-env"
    assert exp.expand_token("${platform:}", stack) == platform_name()
    assert exp.expand_token("${pwd:}", stack) == os.getcwd()
    assert exp.expand_token("${program:} ${version:}", stack) == "certsh 9.9"
    assert len(exp.expand_token("${localtime:%Y}", stack)) == 4


def test_json_sources_read_the_last_return_value(env):
    ctx, stack, exp = env
    stack.base.ret = "{items: [{k: 1}, {id: 'x'}], s: 'v'}"
    assert exp.expand_token("${json:s}", stack) == "v"
    assert exp.expand_token("${jsontype:items}", stack) == "array"
    assert exp.expand_token("${jsonkey:items[].id}", stack) == "1"
    assert exp.expand_token("${jsonkey:items[].id:0:1}", stack) == "-1"
    stack.base.ret = "not json"
    assert exp.expand_token("${json:s}", stack) == ""
    assert exp.expand_token("${jsonkey:items[].id}", stack) == "-1"


def test_host_resolvers_take_precedence(env):
    ctx, stack, exp = env
    ctx.assign("x", "variable", stack, LOCAL)
    exp.register("get", lambda arg: f"host:{arg}")
    exp.register("handle", lambda arg: None)
    assert "handle" in exp.sources() and "get" in exp.sources()
    assert exp.sources().count("get") == 1
    assert exp.expand_token("${get:x}", stack) == "host:x"
    assert exp.expand_token("[${handle:h}]", stack) == "[]"


def test_failing_resolver_gives_empty(env):
    ctx, stack, exp = env

    def broken(arg):
        raise RuntimeError("driver gone")

    exp.register("broken", broken)
    assert exp.expand_token("a${broken:}b", stack) == "ab"


def test_expand_handles_each_token(env):
    ctx, stack, exp = env
    ctx.assign("x", "1", stack, LOCAL)
    assert exp.expand(["echo", "${get:x}", "${get:x}${get:x}"], stack) == ["echo", "1", "11"]
