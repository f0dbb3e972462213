"""
Dynamite Minibatch Adapter
==========================
Converts packed minibatches into the per-sequence tensors that dynamic
models consume.

    packed stream (B, T, dim) + lengths
        -> unpack          B tensors of (len_s, dim)
        -> transpose       B tensors of (dim, len_s)   time on the trailing axis
        -> non-sequence    B tensors of (dim,)          sample axis sliced off
        -> constants       detached, no gradient

`to_vector` then explodes a (dim, len) sequence into its step slices
for the per-step combinators.

Usage:
    >>> features, labels = from_packed_minibatch(
    ...     [mb[features_info], mb[labels_info]],
    ...     [InputVariable("features", 2000), InputVariable("labels", 5, is_sequence=False)],
    ... )
    >>> features[0].shape, labels[0].shape
    (torch.Size([2000, 7]), torch.Size([5]))
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import torch

from dynamite.data.source import InputVariable, MinibatchData
from dynamite.model.ops import index, to_vector

logger = logging.getLogger(__name__)


def from_packed_minibatch(
    inputs: Sequence[MinibatchData],
    variables: Sequence[InputVariable],
    device: Optional[torch.device] = None,
) -> list[list[torch.Tensor]]:
    """
    Unpack every stream of a minibatch into per-sequence constants.

    Parameters
    ----------
    inputs : list[MinibatchData]
        One packed stream per argument.
    variables : list[InputVariable]
        Axis metadata for each argument, in the same order.
    device : torch.device or None
        Device for the resulting tensors.

    Returns
    -------
    list[list[torch.Tensor]]
        result[i][s] is sequence s of argument i: (dim, len) for a
        sequence stream, (dim,) for a non-sequence stream.

    Raises
    ------
    ValueError
        If the numbers of inputs and variables differ, if the streams
        decode to different numbers of sequences, or if a non-sequence
        stream holds more than one sample per sequence.
    """
    if len(inputs) != len(variables):
        raise ValueError(
            f"got {len(inputs)} minibatch inputs for {len(variables)} variables"
        )

    result: list[list[torch.Tensor]] = []
    num_seq = None
    for packed, variable in zip(inputs, variables):
        sequences = packed.unpack(variable, device)
        if num_seq is None:
            num_seq = len(sequences)
        elif num_seq != len(sequences):
            raise ValueError(
                f"inconsistent minibatch size: stream '{variable.name}' has "
                f"{len(sequences)} sequences, expected {num_seq}"
            )

        has_sequence_axis = len(variable.dynamic_axes) > 1
        arg = []
        for data in sequences:
            data = data.transpose(0, 1)  # (dim, len)
            if not has_sequence_axis:
                if data.shape[-1] != 1:
                    raise ValueError(
                        f"non-sequence stream '{variable.name}' has "
                        f"{data.shape[-1]} samples in one sequence"
                    )
                data = index(data, 0)
            arg.append(data.detach().contiguous())
        result.append(arg)

    return result


def explode_sequences(batch: Sequence[torch.Tensor]) -> list[list[torch.Tensor]]:
    """Split each (dim, len) sequence of a batch into its step slices."""
    return [to_vector(x) for x in batch]
