"""Static, deterministic partitioning of the work list across loaders and threads."""

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Slice:
    """A contiguous ``[offset, offset + length)`` range of the global work list."""

    offset: int
    length: int

    @property
    def stop(self) -> int:
        return self.offset + self.length

    def indices(self) -> range:
        return range(self.offset, self.stop)


def balanced_range(total: int, parts: int, index: int) -> Slice:
    """
    Split ``total`` items into ``parts`` contiguous ranges and return range ``index``.

    The first ``total % parts`` ranges get one extra item. Parts beyond
    ``total`` get zero-length ranges.
    """
    if total < 0:
        raise ValueError(f"total must be >= 0, got {total}")
    if parts < 1:
        raise ValueError(f"parts must be >= 1, got {parts}")
    if not 0 <= index < parts:
        raise ValueError(f"index must be in [0, {parts}), got {index}")

    q, r = divmod(total, parts)
    if index < r:
        return Slice(offset=(q + 1) * index, length=q + 1)
    return Slice(offset=(q + 1) * r + q * (index - r), length=q)


def loader_slice(total: int, num_loaders: int, loader_idx: int) -> Slice:
    """The part of the global work list owned by one loader instance."""
    return balanced_range(total, num_loaders, loader_idx)


def thread_slices(
    total: int, num_loaders: int, loader_idx: int, num_threads: int
) -> List[Slice]:
    """
    Slices of the global work list for each thread of one loader instance.

    Offsets are absolute indices into the global list.
    """
    owned = loader_slice(total, num_loaders, loader_idx)
    slices = []
    for thread_idx in range(num_threads):
        local = balanced_range(owned.length, num_threads, thread_idx)
        slices.append(Slice(offset=owned.offset + local.offset, length=local.length))
    return slices
