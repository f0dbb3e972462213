"""
Dynamite Layers
===============
Parameterized leaf models and their sequential composition.

    Embedding(dim)      x -> E @ x                      (broadcasting)
    RNNStep(dim)        (h, x) -> relu(W @ x + R @ h + b)
    Linear(dim)         x -> W @ x + b                  (broadcasting)
    Sequential(models)  x -> models[-1](...models[0](x))

Input widths may be omitted; they are inferred from the first input the
layer sees (see `parameters.materialize_input_dim`).

Usage:
    >>> embed = Embedding(50, input_dim=2000)
    >>> step = RNNStep(25)
    >>> h = step(torch.zeros(25), embed(x))
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import torch

from dynamite.model.base import BinaryModel, UnaryBroadcastingModel, UnaryModel
from dynamite.model.parameters import (
    constant_parameter,
    glorot_parameter,
    materialize_input_dim,
)

logger = logging.getLogger(__name__)


class Embedding(UnaryBroadcastingModel):
    """
    Embedding lookup as a linear map without bias.

    With a one-hot input the product selects one column of E; a packed
    (input_dim, seq_len) sequence is embedded in a single product.

    Parameters
    ----------
    embedding_dim : int
        Width of the embedded vectors.
    input_dim : int or None
        Width of the input (vocabulary size). Inferred when None.
    device : torch.device or None
        Device for the parameter.
    """

    def __init__(
        self,
        embedding_dim: int,
        input_dim: Optional[int] = None,
        device: Optional[torch.device] = None,
    ):
        self.embedding_dim = embedding_dim
        super().__init__(parameters={
            "E": glorot_parameter(embedding_dim, input_dim, device=device),
        })

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        E = self["E"]
        materialize_input_dim(E, self.embedding_dim, x.shape[0])
        return E @ x


class RNNStep(BinaryModel):
    """
    A single step of a plain RNN with a rectified-linear activation.

    Parameters
    ----------
    output_dim : int
        State width. Also the width of the previous-state input.
    input_dim : int or None
        Width of the step input. Inferred when None.
    device : torch.device or None
        Device for the parameters.
    """

    def __init__(
        self,
        output_dim: int,
        input_dim: Optional[int] = None,
        device: Optional[torch.device] = None,
    ):
        self.output_dim = output_dim
        super().__init__(parameters={
            "W": glorot_parameter(output_dim, input_dim, device=device),
            "R": glorot_parameter(output_dim, output_dim, device=device),
            "b": constant_parameter((output_dim,), 0.0, device=device),
        })

    def apply(self, prev_output: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
        W, R, b = self["W"], self["R"], self["b"]
        materialize_input_dim(W, self.output_dim, x.shape[0])
        return torch.relu(W @ x + R @ prev_output + b)


class Linear(UnaryBroadcastingModel):
    """
    Affine projection W @ x + b.

    Parameters
    ----------
    output_dim : int
        Output width.
    input_dim : int or None
        Input width. Inferred when None.
    device : torch.device or None
        Device for the parameters.
    """

    def __init__(
        self,
        output_dim: int,
        input_dim: Optional[int] = None,
        device: Optional[torch.device] = None,
    ):
        self.output_dim = output_dim
        super().__init__(parameters={
            "W": glorot_parameter(output_dim, input_dim, device=device),
            "b": constant_parameter((output_dim,), 0.0, device=device),
        })

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        W, b = self["W"], self["b"]
        materialize_input_dim(W, self.output_dim, x.shape[0])
        return W @ x + b


class Sequential(UnaryModel):
    """
    Chain unary models, applying each to the output of the previous.

    The chain owns no parameters of its own; stage i's block is captured
    under "[i]", so `seq.nested("[1]").nested("step")["W"]` reaches into
    the second stage.
    """

    def __init__(self, models: Sequence[UnaryModel]):
        self.models = tuple(models)
        super().__init__(nested={
            f"[{i}]": model for i, model in enumerate(self.models)
        })

    def apply(self, x):
        for model in self.models:
            x = model(x)
        return x

    def __len__(self) -> int:
        return len(self.models)
