"""
Dynamite Tensor Helpers
=======================
Small functions over PyTorch primitives that the models share.

Layout reminder:
    sample            (dim,)
    packed sequence   (dim, seq_len)   — time is the trailing axis
    weight            (output_dim, input_dim), applied as W @ x
"""

from __future__ import annotations

from typing import Sequence

import torch


def index(x: torch.Tensor, i: int) -> torch.Tensor:
    """
    Select position `i` of the trailing axis and drop that axis.

    Example
    -------
    >>> x = torch.arange(6.0).reshape(2, 3)   # (dim=2, len=3)
    >>> index(x, 1)
    tensor([1., 4.])
    """
    length = x.shape[-1]
    if not 0 <= i < length:
        raise IndexError(f"index {i} out of range for trailing axis of length {length}")
    x = x.narrow(-1, i, 1)
    return x.reshape(x.shape[:-1])


def to_vector(x: torch.Tensor) -> list[torch.Tensor]:
    """Explode a packed (dim, seq_len) tensor into seq_len step slices."""
    return [index(x, t) for t in range(x.shape[-1])]


def splice(items: Sequence[torch.Tensor], axis: int) -> torch.Tensor:
    """
    Concatenate tensors along `axis`.

    An axis equal to the items' rank means "a new trailing axis", so
    vectors spliced along axis 1 become the columns of a matrix.
    """
    if not items:
        raise ValueError("cannot splice an empty list of tensors")
    rank = items[0].dim()
    if axis == rank:
        return torch.stack(list(items), dim=axis)
    return torch.cat(list(items), dim=axis)


def reduce_log_sum(z: torch.Tensor) -> torch.Tensor:
    """Log-sum-exp over all axes, as a scalar."""
    return torch.logsumexp(z.reshape(-1), dim=0)


def softmax(z: torch.Tensor) -> torch.Tensor:
    """Softmax over all axes, stabilized by subtracting the log-sum-exp."""
    return torch.exp(z - reduce_log_sum(z))


def cross_entropy_with_softmax(z: torch.Tensor, label: torch.Tensor) -> torch.Tensor:
    """
    Cross entropy of unnormalized scores `z` against a one-hot `label`:

        loss = logsumexp(z) - label · z
    """
    return reduce_log_sum(z) - torch.dot(label.reshape(-1), z.reshape(-1))


def collate_losses(losses: Sequence[torch.Tensor]) -> torch.Tensor:
    """
    Sum a batch of per-example losses into one scalar.

    Each loss may be a scalar or a vector over sequence positions; all
    are flattened, concatenated along a fresh axis and reduce-summed.
    """
    if not losses:
        raise ValueError("cannot collate an empty list of losses")
    return torch.cat([loss.reshape(-1) for loss in losses], dim=0).sum(dim=0)
