import asyncio
import collections
import sys
from typing import Optional

from docsh.docsh_config import Config
from docsh.docsh_datatypes import ShellState
from docsh.docsh_editor import EditorBridge
from docsh.docsh_interpreter import Evaluator, format_error
from docsh.docsh_shell_api import InMemoryServiceProvider, ShellApi

PROMPT = "docsh > "


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


class InputStream:
    """The shell's input: queued text (from `edit`) first, then the terminal."""

    def __init__(self):
        self._pending = collections.deque()

    def unshift(self, text: str):
        self._pending.appendleft(text)

    def read(self) -> Optional[str]:
        return self._pending.popleft() if self._pending else None

    async def readline(self, prompt: str) -> str:
        queued = self.read()
        if queued is None:
            return await ainput(prompt)
        # Echo so re-injected input looks like it was typed
        print(f"{prompt}{queued}")
        return queued + "\n"


def _make_provider(argv):
    if len(argv) > 1 and not argv[1].startswith("-"):
        from docsh.docsh_http import HttpServiceProvider
        return HttpServiceProvider(argv[1])
    return InMemoryServiceProvider()


async def main(argv=None):
    """Run the interactive shell until `exit` or EOF."""
    argv = sys.argv if argv is None else argv
    print("docsh 0.1")
    print("Type 'help' for commands, 'exit' or Ctrl+D to quit.")

    # Setup
    config = Config.load()
    provider = _make_provider(argv)
    shell_api = ShellApi(provider, batch_size=config.get("batch-size"))
    namespace = shell_api.namespace(config=config)
    evaluator = Evaluator(shell_api=shell_api, config=config)
    stream = InputStream()
    editor = EditorBridge(stream, config, ShellState(), namespace=namespace)
    editor.sweep_scratch_dir()

    # REPL Loop
    try:
        while True:
            try:
                raw = await stream.readline(PROMPT)
                if raw == "":
                    raise EOFError
                line = raw.rstrip("\n")

                if not line.strip():
                    continue
                if line.strip() == "exit":
                    break

                cmd, _, rest = line.strip().partition(" ")
                if cmd == "edit":
                    await editor.run_edit_command(rest)
                    continue

                out = await evaluator.evaluate(line, namespace)
                if out is not None:
                    print(out)

            except EOFError:
                print("\nExiting.")
                break
            except Exception as e:
                # Errors raised by user code are reported and the shell keeps going
                print(format_error(e), file=sys.stderr)
    finally:
        await provider.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")


if __name__ == "__main__":
    run()
