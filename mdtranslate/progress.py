"""Terminal progress reporting."""

from __future__ import annotations

import sys
from typing import Optional

from tqdm import tqdm

from .structures import ProgressUpdate


class ProgressBar:
    """Feeds ``ProgressUpdate`` callbacks into a tqdm bar on stderr."""

    def __init__(self, label: str, *, disable: bool = False) -> None:
        self.label = label
        self.disable = disable
        self._bar: Optional[tqdm] = None

    def __call__(self, update: ProgressUpdate) -> None:
        if self._bar is None:
            self._bar = tqdm(
                total=update.total,
                desc=self.label,
                unit="seg",
                file=sys.stderr,
                leave=False,
                disable=self.disable,
            )
        elif self._bar.total != update.total:
            self._bar.total = update.total
        self._bar.n = update.done
        self._bar.refresh()
        if update.finished:
            self.close()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def __enter__(self) -> "ProgressBar":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
