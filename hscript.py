import asyncio
import sys
from pathlib import Path

from hscript.hscript_runtime import ScriptRunner

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def print_effects(result, topics=('debug',)):
    for effect in result.side_effects:
        if any(t in topics for t in effect.get('topics', [])):
            print(effect.get('message', ''), file=sys.stderr)

async def run_script_file(file_path: str):
    """Render an HScript document to stdout and exit with appropriate status."""
    runner = ScriptRunner()
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    runner.source_dir = str(p.parent.resolve())
    result = await runner.handle_script(source)
    print_effects(result)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    print(result.value)

async def main():
    """Run a document when provided, otherwise start the interactive REPL."""
    if len(sys.argv) > 1:
        arg = sys.argv[1]
        if not arg.startswith("-"):
            await run_script_file(arg)
            return

    print("HScript REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    # One runner for the session so variables and functions persist
    runner = ScriptRunner()
    runner.source_dir = str(Path.cwd())
    runner.prompt_handler = ainput

    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break

            result = await runner.handle_script(line)

            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)
                continue

            print_effects(result, topics=('debug', 'stderr'))
            if result.value:
                print(result.value)

        except EOFError:
            print("\nExiting.")
            break
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
