import asyncio
import sys
from pathlib import Path

from certsh.certsh_config import Config
from certsh.certsh_runtime import ScriptRunner, VERSION

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def print_effect(effect: dict):
    """Stream side effects as they happen: stdout effects to stdout, diagnostics to stderr."""
    stream = sys.stderr if effect.get('topics') == ['stderr'] else sys.stdout
    print(effect.get('message', ''), file=stream)

def load_config(argv):
    config = Config()
    folder = str(Path(__file__).resolve().parent)
    if not config.load(folder, argv):
        print("Error starting.  Check certsh.yaml.", file=sys.stderr)
        raise SystemExit(1)
    return config

async def run_script_file(file_path: str, args, config: Config):
    """Run a certsh script non-interactively and exit with appropriate status."""
    runner = ScriptRunner(config=config, args=[file_path] + list(args), output=print_effect)
    result = await runner.run_file(file_path, args)
    # Diagnostics were already streamed by print_effect
    if result.status == 'error':
        raise SystemExit(1)

async def main():
    """Run a script file when provided, otherwise start the interactive REPL."""
    config = load_config(sys.argv[1:])
    if config.args:
        arg = config.args[0]
        # Treat the first program argument as a script unless it is a flag
        if not arg.startswith("-"):
            await run_script_file(arg, config.args[1:], config)
            return

    program = config.get("executableName", "certsh")
    print(f"{program} v{VERSION}")
    print("Type 'help' for commands, 'exit' or Ctrl+D to quit.")

    runner = ScriptRunner(config=config, output=print_effect)

    # REPL Loop
    while True:
        try:
            raw = await ainput(f"{program}> ")
            if raw == "":
                raise EOFError
            line = raw.strip()
            if not line:
                continue

            result = await runner.handle_line(line)
            if result.terminated:
                break

        except EOFError:
            print("\nExiting.")
            break

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
