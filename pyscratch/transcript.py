"""
Transcript of evaluated cells, exportable as annotated source.

Exported source keeps every cell's code and appends each rendered entry as a
comment block:

    # %%
    x = [1, 2]
    x
    # *** [RESULT]
    # *** list:1 [
    # ***     0: 1,
    # ***     1: 2,
    # *** ]

Annotation lines are ignored when the source is split into cells again, so an
exported transcript can be re-run as is.
"""
from typing import List

from pyscratch.config.defaults import TRANSCRIPT_DEFAULTS
from pyscratch.context import Evaluation


def split_cells(source: str) -> List[str]:
    """Split source into cells at cell marker lines, dropping annotations."""
    cells: List[List[str]] = [[]]
    for line in source.splitlines():
        stripped = line.strip()
        if stripped.startswith(TRANSCRIPT_DEFAULTS.block_prefix):
            continue
        if stripped.startswith(TRANSCRIPT_DEFAULTS.cell_marker):
            cells.append([])
            continue
        cells[-1].append(line)
    return [text for text in ("\n".join(lines).strip("\n") for lines in cells) if text.strip()]


class Transcript:
    def __init__(self):
        self.evaluations: List[Evaluation] = []

    def add(self, evaluation: Evaluation) -> None:
        self.evaluations.append(evaluation)

    def __len__(self) -> int:
        return len(self.evaluations)

    def to_source(self) -> str:
        prefix = TRANSCRIPT_DEFAULTS.block_prefix
        lines: List[str] = []
        for evaluation in self.evaluations:
            lines.append(TRANSCRIPT_DEFAULTS.cell_marker)
            lines.extend(evaluation.code.rstrip("\n").splitlines())
            for entry in evaluation.entries:
                if not entry.text:
                    continue
                lines.append(f"{prefix} [{entry.kind.upper()}]")
                lines.extend(f"{prefix} {line}".rstrip() for line in entry.text.splitlines())
        return "\n".join(lines) + "\n"
