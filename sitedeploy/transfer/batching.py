"""Size-bounded batching of a change set."""

from collections.abc import Sequence
from dataclasses import dataclass, field

from ..sync.scanner import LocalFile


@dataclass
class Batch:
    """A contiguous slice of the change set packed into one archive."""

    files: list[LocalFile] = field(default_factory=list)
    size: int = 0
    """Cumulative size of the batch's files in bytes"""

    def add(self, local_file: LocalFile) -> None:
        self.files.append(local_file)
        self.size += local_file.size

    def __len__(self) -> int:
        return len(self.files)


def create_batches(files: Sequence[LocalFile], max_bytes: int) -> list[Batch]:
    """Split files into batches with a single greedy pass.

    Files keep their order. A batch is closed when adding the next file
    would exceed ``max_bytes``; a file larger than the limit still gets a
    batch of its own. ``max_bytes <= 0`` yields a single batch.

    Args:
        files: Files in change-set order
        max_bytes: Batch size limit in bytes (0 = unlimited)

    Returns:
        List of batches (empty if there are no files). With a 1 MiB limit,
        sizes ``[700000, 700000, 100000]`` pack as ``[[f1], [f2, f3]]``.
    """
    batches: list[Batch] = []
    current = Batch()

    for local_file in files:
        if (
            max_bytes > 0
            and current.files
            and current.size + local_file.size > max_bytes
        ):
            batches.append(current)
            current = Batch()
        current.add(local_file)

    if current.files:
        batches.append(current)

    return batches
