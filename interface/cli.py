from __future__ import annotations

import argparse
from pathlib import Path

from rich.console import Console
from rich.prompt import Prompt

from interface.nlp_interpreter import CommandInterpreter
from interface.task_executor import TaskExecutor


def main() -> None:
    parser = argparse.ArgumentParser(description="Seal track cleaning, resampling and dive merging console")
    parser.add_argument("--config", default="config/settings.yaml", help="YAML settings file")
    parser.add_argument("commands", nargs="*", help="Run these commands non-interactively, e.g. 'load' 'run' 'save'")
    args = parser.parse_args()

    console = Console()
    interpreter = CommandInterpreter()
    executor = TaskExecutor(Path(args.config))

    if args.commands:
        for line in args.commands:
            cmd = interpreter.parse_command(line)
            ok, err = interpreter.validate_command(cmd)
            if not ok:
                console.print(f"Invalid command: {err}", style="bold red")
                raise SystemExit(2)
            result = executor.execute(cmd)
            console.print(result.message, style="green" if result.ok else "red")
            if not result.ok:
                raise SystemExit(1)
        return

    console.print("Seal track console: type 'help' or 'exit'", style="bold green")
    while True:
        try:
            user_input = Prompt.ask("»")
        except (EOFError, KeyboardInterrupt):
            console.print("\nBye!", style="bold yellow")
            break

        if not user_input.strip():
            continue

        cmd = interpreter.parse_command(user_input)
        ok, err = interpreter.validate_command(cmd)
        if not ok:
            console.print(f"Invalid command: {err}", style="bold red")
            continue
        result = executor.execute(cmd)
        if result.message == "exit":
            console.print("Bye!", style="bold yellow")
            break
        style = "green" if result.ok else "red"
        console.print(result.message, style=style)
        if result.artifact:
            console.print(f"Artifact: {result.artifact}")


if __name__ == "__main__":
    main()
