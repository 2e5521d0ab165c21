"""
CLI for pyscratch.

    pyscratch run notebook.py --save notebook.out.py
    pyscratch repl --sandbox none
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional, TextIO

from pyscratch.config.logging import setup_logging
from pyscratch.context import Evaluation, ScratchContext
from pyscratch.exceptions import SandboxSetupError
from pyscratch.observability import init_metrics, shutdown_metrics
from pyscratch.sandbox import SandboxConfig, SandboxLevel
from pyscratch.transcript import Transcript, split_cells

logger = logging.getLogger(__name__)

RESET_COMMAND = ":reset"


def print_evaluation(evaluation: Evaluation, stream: TextIO) -> None:
    for entry in evaluation.entries:
        if entry.text:
            stream.write(entry.text + "\n")


async def run_file_async(path: str, config: SandboxConfig, save: Optional[str] = None) -> int:
    with open(path, "r", encoding="utf-8") as f:
        cells = split_cells(f.read())

    context = ScratchContext(config)
    transcript = Transcript()
    await context.start()
    try:
        for cell in cells:
            transcript.add(await context.execute(cell))
    finally:
        await context.close()

    source = transcript.to_source()
    if save:
        with open(save, "w", encoding="utf-8") as f:
            f.write(source)
        logger.info(f"Transcript written to {save}")
    else:
        sys.stdout.write(source)

    failed = sum(1 for evaluation in transcript.evaluations if evaluation.is_error)
    if failed:
        logger.info(f"{failed} of {len(transcript)} cell(s) raised")
    return 1 if failed else 0


async def _readline(prompt: str) -> str:
    if sys.stdin.isatty():
        sys.stdout.write(prompt)
        sys.stdout.flush()
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, sys.stdin.readline)


async def repl_async(config: SandboxConfig) -> int:
    context = ScratchContext(config)
    await context.start()
    buffer = []
    try:
        while True:
            line = await _readline("... " if buffer else ">>> ")
            at_eof = line == ""
            if line.strip() == RESET_COMMAND and not buffer:
                await context.reset()
                logger.info("Session reset")
                continue
            if line.strip() and not at_eof:
                buffer.append(line.rstrip("\n"))
                continue
            if buffer:
                evaluation = await context.execute("\n".join(buffer))
                print_evaluation(evaluation, sys.stdout)
                buffer = []
            if at_eof:
                return 0
    finally:
        await context.close()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(
        prog="pyscratch",
        description="Evaluate Python code in a sandbox and render the results",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Evaluate a file cell by cell")
    run_parser.add_argument("file", help="Source file; cells are separated by '# %%' lines")
    run_parser.add_argument("--save", help="Write the annotated transcript to this path")

    repl_parser = subparsers.add_parser("repl", help="Read cells from stdin; a blank line submits")

    for sub in (run_parser, repl_parser):
        sub.add_argument(
            "--sandbox",
            default=SandboxLevel.SUBPROCESS.value,
            choices=[level.value for level in SandboxLevel],
            help="Sandbox isolation level (default: subprocess)",
        )
        sub.add_argument(
            "--log-level",
            default="WARNING",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Log level (default: WARNING)",
        )
        sub.add_argument("--log-file", help="Log file path")
        sub.add_argument(
            "--metrics-exporter",
            default="none",
            choices=["none", "console", "otlp", "otlp_http"],
            help="Metrics exporter type (default: none)",
        )
        sub.add_argument(
            "--metrics-endpoint",
            help="OTLP endpoint URL (e.g., http://localhost:4317 for gRPC)",
        )

    args = parser.parse_args(argv)

    setup_logging(args.log_level, getattr(args, "log_file", None))

    if args.metrics_exporter != "none":
        exporter_kwargs = {}
        if args.metrics_endpoint:
            exporter_kwargs["endpoint"] = args.metrics_endpoint
        init_metrics(exporter_type=args.metrics_exporter, **exporter_kwargs)

    config = SandboxConfig(level=SandboxLevel(args.sandbox))
    try:
        if args.command == "run":
            code = asyncio.run(run_file_async(args.file, config, args.save))
        elif args.command == "repl":
            code = asyncio.run(repl_async(config))
        else:
            parser.print_help()
            code = 1
    except SandboxSetupError as e:
        logger.error(str(e))
        code = 2
    finally:
        shutdown_metrics()
    sys.exit(code)


if __name__ == "__main__":
    main()
