"""ExprLang entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import Callable, List, Optional

from errors import ExprError
from interpreter import DEFAULT_MAX_DEPTH, MAX_DEPTH_LIMIT, Interpreter, TracebackFormatter
from values import TYPE_VOID, Value, render

PROMPT = "\x1b[38;2;153;221;255m>>>\033[0m "
CONTINUATION_PROMPT = "\x1b[38;2;153;221;255m..>\033[0m "


def _print_value(value: Value, output_sink: Callable[[str], None]) -> None:
    if value.type != TYPE_VOID:
        output_sink(render(value))


def run_repl(
    verbose: bool,
    max_depth: int = DEFAULT_MAX_DEPTH,
    *,
    input_provider: Optional[Callable[[str], str]] = None,
    output_sink: Optional[Callable[[str], None]] = None,
    error_sink: Optional[Callable[[str], None]] = None,
) -> int:
    read = input_provider or input
    write = output_sink or print
    write_error = error_sink or (lambda text: print(text, file=sys.stderr))

    write("\x1b[38;2;153;221;255mExprLang\033[0m REPL. Type :reset to clear variables, :quit to exit.")
    interpreter = Interpreter(filename="<repl>", verbose=verbose, max_depth=max_depth)

    while True:
        prompt = CONTINUATION_PROMPT if interpreter.tokens else PROMPT
        try:
            line = read(prompt)
        except EOFError:
            write("")
            break

        stripped = line.strip()
        if not interpreter.tokens:
            if stripped == ":quit":
                break
            if stripped == ":reset":
                interpreter.reset()
                continue
            if stripped == "":
                continue

        interpreter.feed(line + "\n")
        if interpreter.unclosed_brackets() > 0:
            # Wait for the rest of the block before evaluating.
            continue
        try:
            value = interpreter.parse()
        except ExprError as error:
            formatter = TracebackFormatter(interpreter)
            write_error(formatter.format_text(error, verbose=interpreter.verbose))
            continue
        _print_value(value, write)

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="ExprLang expression evaluator")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit scope snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Maximum nesting depth of brackets and blocks")
    args = parser.parse_args(argv)

    if not 1 <= args.max_depth <= MAX_DEPTH_LIMIT:
        print(f"--max-depth must be between 1 and {MAX_DEPTH_LIMIT}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, max_depth=args.max_depth)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(filename=filename, verbose=args.verbose, max_depth=args.max_depth)
    try:
        value = interpreter.parse(source_text)
    except ExprError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    _print_value(value, print)
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
