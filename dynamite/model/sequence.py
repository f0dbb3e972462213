"""
Dynamite Sequence Combinators
=============================
Turn a binary step model (previous_state, input) -> state into models
over whole sequences. A sequence is a Python list of per-step tensors.

    Recurrence(step, h0)          [x0..xn] -> [h0'..hn']   every state
    Recurrence(step, h0, True)    same, scanning right to left
    Fold(step)                    [x0..xn] -> hn'          final state only
    BiRecurrence(fwd, bwd, h0)    [x0..xn] -> [fwd_t ++ bwd_t]

State is threaded through an ordinary loop with an accumulator, so there
is no placeholder or deferred value anywhere: step t simply receives the
tensor computed at step t-1.

Usage:
    >>> step = RNNStep(25, input_dim=50)
    >>> rec = Recurrence(step, torch.zeros(25))
    >>> states = rec([x0, x1, x2])          # three (25,) tensors
    >>> Fold(step)([x0, x1, x2])            # equals states[-1]
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence as SequenceType, Union

import torch

from dynamite.model.base import (
    Batch,
    BinaryModel,
    UnaryModel,
    UnarySequenceModel,
)
from dynamite.model.layers import Embedding
from dynamite.model.ops import to_vector

logger = logging.getLogger(__name__)


def _resolve_initial_state(
    step: BinaryModel,
    initial_state: Optional[torch.Tensor],
    like: torch.Tensor,
) -> torch.Tensor:
    if initial_state is not None:
        return initial_state
    output_dim = getattr(step, "output_dim", None)
    if output_dim is None:
        raise ValueError(
            f"{type(step).__name__} does not declare output_dim; "
            f"pass an explicit initial_state"
        )
    return torch.zeros(output_dim, device=like.device, dtype=like.dtype)


class Recurrence(UnarySequenceModel):
    """
    Thread state through `step` across a sequence.

    Forward: out[0] = step(h0, seq[0]), out[t] = step(out[t-1], seq[t]).
    Backward: the same recursion from the last position to the first,
    with each result stored at its own position, so out[t] always
    belongs to seq[t].

    Parameters
    ----------
    step : BinaryModel
        Step model called as step(previous_state, input). Captured under
        "step".
    initial_state : torch.Tensor or None
        State fed to the first step. None means zeros of
        `step.output_dim`, created on the input's device.
    go_backwards : bool
        Scan right to left.
    """

    def __init__(
        self,
        step: BinaryModel,
        initial_state: Optional[torch.Tensor] = None,
        go_backwards: bool = False,
    ):
        self.step = step
        self.initial_state = initial_state
        self.go_backwards = go_backwards
        super().__init__(nested={"step": step})

    def apply(self, seq: SequenceType[torch.Tensor]) -> list[torch.Tensor]:
        length = len(seq)
        if length == 0:
            return []

        state = _resolve_initial_state(self.step, self.initial_state, seq[0])
        positions = range(length - 1, -1, -1) if self.go_backwards else range(length)

        out: list[Optional[torch.Tensor]] = [None] * length
        for t in positions:
            state = self.step(state, seq[t])
            out[t] = state
        return out


class Fold(UnaryModel):
    """
    Reduce a sequence to the final state of a forward Recurrence.

    Accepts either a list of step tensors or a packed (dim, seq_len)
    tensor, which is split into steps first. The step block is captured
    under "step".

    Raises
    ------
    ValueError
        When applied to an empty sequence (there is no final state).
    """

    def __init__(self, step: BinaryModel, initial_state: Optional[torch.Tensor] = None):
        self.step = step
        self.recurrence = Recurrence(step, initial_state)
        super().__init__(nested={"step": step})

    def apply(self, x: Union[torch.Tensor, SequenceType[torch.Tensor]]) -> torch.Tensor:
        seq = to_vector(x) if isinstance(x, torch.Tensor) else x
        if len(seq) == 0:
            raise ValueError("cannot fold an empty sequence")
        return Sequence.last(self.recurrence(seq))


def _splice_features(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    return torch.cat([a, b], dim=0)


class BiRecurrence(UnarySequenceModel):
    """
    Forward and backward recurrences over the same input, concatenated
    per step along the feature axis (output width = 2 × state width).

    Blocks are captured under "fwd" and "bwd".
    """

    def __init__(
        self,
        step_fwd: BinaryModel,
        step_bwd: BinaryModel,
        initial_state: Optional[torch.Tensor] = None,
    ):
        self.fwd = Recurrence(step_fwd, initial_state)
        self.bwd = Recurrence(step_bwd, initial_state, go_backwards=True)
        self._splice = Batch.mapper(BinaryModel(_splice_features))
        super().__init__(nested={"fwd": step_fwd, "bwd": step_bwd})

    def apply(self, seq: SequenceType[torch.Tensor]) -> list[torch.Tensor]:
        return self._splice(self.fwd(seq), self.bwd(seq))


class Sequence:
    """Helpers for per-step sequence models."""

    @staticmethod
    def last(seq: SequenceType[torch.Tensor]) -> torch.Tensor:
        return seq[-1]

    @staticmethod
    def map(model: UnaryModel):
        """Per-step application of a unary model (Batch.mapper)."""
        return Batch.mapper(model)

    @staticmethod
    def embedding(
        embedding_dim: int,
        input_dim: Optional[int] = None,
        device: Optional[torch.device] = None,
    ):
        """Per-step embedding with a fresh Embedding layer."""
        return Sequence.map(Embedding(embedding_dim, input_dim, device=device))
