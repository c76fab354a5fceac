import importlib.util
import sys
from pathlib import Path
import uuid
import pytest

def _load_repl_module():
    """Dynamically load the top-level certsh.py launcher as a module with a unique name."""
    repl_path = Path(__file__).resolve().parents[1] / "certsh.py"
    mod_name = f"certsh_repl_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(repl_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod

def _feed(monkeypatch, repl, lines):
    it = iter(lines)

    async def fake_ainput(prompt: str) -> str:
        return next(it)
    monkeypatch.setattr(repl, "ainput", fake_ainput)

@pytest.mark.asyncio
async def test_repl_exit_immediately(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["certsh.py"])
    repl = _load_repl_module()
    _feed(monkeypatch, repl, ["exit\n"])

    await repl.main()
    out = capsys.readouterr().out
    assert "certsh v0.1.0" in out
    assert "Type 'help' for commands, 'exit' or Ctrl+D to quit." in out

@pytest.mark.asyncio
async def test_repl_prints_output_and_diagnostics(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["certsh.py"])
    repl = _load_repl_module()
    _feed(monkeypatch, repl, [
        "echo hello from certsh\n",
        "\n",
        "bogus\n",
        "quit\n",
    ])

    await repl.main()
    out, err = capsys.readouterr()
    assert "hello from certsh" in out
    assert "unrecognized command: bogus" in err
    assert "bogus" not in out

@pytest.mark.asyncio
async def test_repl_eof_quits(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["certsh.py"])
    repl = _load_repl_module()
    _feed(monkeypatch, repl, [""])

    await repl.main()
    out = capsys.readouterr().out
    assert "Exiting." in out

@pytest.mark.asyncio
async def test_repl_program_name_override(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["certsh.py", "executableName=reader"])
    repl = _load_repl_module()
    _feed(monkeypatch, repl, ["exit\n"])

    await repl.main()
    out = capsys.readouterr().out
    assert "reader v0.1.0" in out

@pytest.mark.asyncio
async def test_script_file_runs_non_interactively(monkeypatch, capsys, tmp_path):
    script = tmp_path / "hello.txt"
    script.write_text("echo from ${arg:0} ${arg:1}\nbogus\n", encoding="utf-8")
    monkeypatch.setattr(sys, "argv", ["certsh.py", str(script), "extra"])
    repl = _load_repl_module()

    await repl.main()
    out, err = capsys.readouterr()
    assert f"from {script} extra" in out
    assert f"{script}:2: unrecognized command: bogus" in err
    assert "certsh v" not in out

@pytest.mark.asyncio
async def test_missing_script_file_exits_with_error(monkeypatch, capsys, tmp_path):
    monkeypatch.setattr(sys, "argv", ["certsh.py", str(tmp_path / "absent.txt")])
    repl = _load_repl_module()

    with pytest.raises(SystemExit) as excinfo:
        await repl.main()
    assert excinfo.value.code == 1
    assert "cannot read" in capsys.readouterr().err
