"""Running external tools, alone or chained through pipes."""

import logging
import signal
import subprocess
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from plastid_remap.config import ToolConfig
from plastid_remap.errors import ToolExecutionError


@dataclass(frozen=True)
class ProcessStage:
    """One process of a pipeline: the tool name and its arguments."""

    tool: str
    args: Sequence[Union[str, Path]]


def _first_failure(returncodes: Sequence[int]) -> Optional[int]:
    """Index of the stage to blame, skipping writers killed by a closed pipe."""
    failed = [i for i, code in enumerate(returncodes) if code != 0]
    if not failed:
        return None
    for index in failed:
        if returncodes[index] != -signal.SIGPIPE:
            return index
    return failed[0]


class ToolRunner:
    """Executes tools resolved in a `ToolConfig` and turns failures into errors."""

    def __init__(self, config: ToolConfig):
        self.config = config

    def command(self, stage: ProcessStage) -> List[str]:
        # Coerce all parts to str so Path arguments can be logged and passed.
        return [str(self.config.executable(stage.tool))] + [str(arg) for arg in stage.args]

    def invoke(
        self,
        tool: str,
        argv: Sequence[Union[str, Path]],
        capture_stdout_to: Optional[Path] = None,
    ) -> Tuple[bool, str]:
        """Run a single tool; see `run_pipeline`."""
        return self.run_pipeline([ProcessStage(tool, argv)], capture_stdout_to=capture_stdout_to)

    def run_pipeline(
        self,
        stages: Sequence[ProcessStage],
        capture_stdout_to: Optional[Path] = None,
    ) -> Tuple[bool, str]:
        """Run `stages` with each stdout feeding the next stdin.

        The final stdout is written to `capture_stdout_to` when given, otherwise
        it is captured and returned. Blocks until every process has exited.
        Raises `ToolExecutionError` with the stderr of the failing stage.
        """
        if not stages:
            raise ValueError("run_pipeline needs at least one stage")
        commands = [self.command(stage) for stage in stages]
        logging.info("Running command: %s", " | ".join(" ".join(cmd) for cmd in commands))

        with ExitStack() as stack:
            if capture_stdout_to is not None:
                final_stdout = stack.enter_context(open(capture_stdout_to, "wb"))
            else:
                final_stdout = subprocess.PIPE

            processes: List[subprocess.Popen] = []
            stderr_files = []
            try:
                for index, cmd in enumerate(commands):
                    is_last = index == len(commands) - 1
                    stderr_file = stack.enter_context(tempfile.TemporaryFile())
                    proc = subprocess.Popen(
                        cmd,
                        stdin=processes[-1].stdout if processes else subprocess.DEVNULL,
                        stdout=final_stdout if is_last else subprocess.PIPE,
                        stderr=stderr_file,
                    )
                    if processes:
                        # Let the upstream process receive SIGPIPE if this one exits early.
                        processes[-1].stdout.close()
                    processes.append(proc)
                    stderr_files.append(stderr_file)
            except OSError as exc:
                for proc in processes:
                    proc.kill()
                    proc.wait()
                raise ToolExecutionError(stages[len(processes)].tool, 127, str(exc)) from exc

            output, _ = processes[-1].communicate()
            for proc in processes[:-1]:
                proc.wait()

            stderr_texts = []
            for stderr_file in stderr_files:
                stderr_file.seek(0)
                stderr_texts.append(stderr_file.read().decode("utf-8", errors="replace"))

        returncodes = [proc.returncode for proc in processes]
        failed = _first_failure(returncodes)
        if failed is not None:
            raise ToolExecutionError(stages[failed].tool, returncodes[failed], stderr_texts[failed])

        for stage, text in zip(stages, stderr_texts):
            if text.strip():
                logging.debug("%s stderr:\n%s", stage.tool, text.rstrip())
        return True, output.decode("utf-8", errors="replace") if output else ""
