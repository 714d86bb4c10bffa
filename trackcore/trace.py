#!/usr/bin/env python3
"""
Trace buffers: dense per-track arrays of sub-step image positions.

A TraceBuffer grows only through a staged write followed by commit(): new
samples are written into a fresh, larger array while readers (the renderer)
keep seeing the old one, and commit() swaps both axes in one step. Trimming
produces new, shorter arrays the same way.
"""
from typing import Optional

import numpy as np


class TraceBuffer:
    """
    Growable pair of float arrays (x, y) holding one entry per sub-step.

    Attributes:
        x, y: committed sample arrays (image pixels, NaN for invalid samples).
    """

    def __init__(self):
        self.x = np.zeros(0)
        self.y = np.zeros(0)
        self._stage_x: Optional[np.ndarray] = None
        self._stage_y: Optional[np.ndarray] = None
        self._base = 0

    def __len__(self) -> int:
        return len(self.x)

    @property
    def staging(self) -> bool:
        return self._stage_x is not None

    def reset(self, x: Optional[float] = None, y: Optional[float] = None) -> None:
        """Discard all samples, optionally starting over from a single point."""
        self.discard()
        if x is None:
            self.x = np.zeros(0)
            self.y = np.zeros(0)
        else:
            self.x = np.array([x], dtype=float)
            self.y = np.array([y], dtype=float)

    def begin(self, count: int) -> None:
        """Stage room for count new samples after the committed ones."""
        self._base = len(self.x)
        self._stage_x = np.empty(self._base + count)
        self._stage_y = np.empty(self._base + count)
        self._stage_x[:self._base] = self.x
        self._stage_y[:self._base] = self.y
        self._stage_x[self._base:] = np.nan
        self._stage_y[self._base:] = np.nan

    def put(self, i: int, x: float, y: float) -> None:
        """Write staged sample i (0-based, relative to the committed length)."""
        self._stage_x[self._base + i] = x
        self._stage_y[self._base + i] = y

    def commit(self) -> None:
        if self._stage_x is None:
            return
        self.x, self.y = self._stage_x, self._stage_y
        self.discard()

    def discard(self) -> None:
        self._stage_x = None
        self._stage_y = None
        self._base = 0

    def trim(self, count: int) -> bool:
        """
        Drop the last count samples.

        Returns:
            False (and leaves the buffer untouched) if count exceeds the length.
        """
        length = len(self.x) - count
        if length < 0:
            return False
        self.x = self.x[:length].copy()
        self.y = self.y[:length].copy()
        return True
