"""
Dynamite Parameters
===================
Learnable tensors and the ParameterBlock that organizes them.

A ParameterBlock is the bookkeeping half of every model: a read-only
mapping from parameter name to tensor, plus named references to the
blocks of nested models. Nested blocks are shared by reference, so the
same sub-model can appear inside several parents (for example a static
and an unrolled formulation built from the same RNN step).

Path Naming:
    Paths are dotted, with positional children written as "[i]":

        Sequential([Embedding, Fold(RNNStep), Linear])
          "[0].E"
          "[1].step.W", "[1].step.R", "[1].step.b"
          "[2].W", "[2].b"

Inferred Dimensions:
    A weight matrix may be created without its input width. It starts as
    an uninitialized (lazy) parameter and is materialized, then Glorot
    initialized, the first time its layer sees an input.

Usage:
    >>> W = glorot_parameter(25, 50)
    >>> b = constant_parameter((25,), 0.0)
    >>> block = ParameterBlock({"W": W, "b": b})
    >>> block["W"].shape
    torch.Size([25, 50])
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Union

import torch
import torch.nn as nn
from torch.nn.parameter import UninitializedParameter

logger = logging.getLogger(__name__)

ParameterSource = Union[Mapping[str, torch.Tensor], Iterable[tuple[str, torch.Tensor]]]


# =============================================================================
# Parameter construction
# =============================================================================

def glorot_parameter(
    output_dim: int,
    input_dim: Optional[int] = None,
    device: Optional[torch.device] = None,
    dtype: torch.dtype = torch.float32,
) -> nn.Parameter:
    """
    Create a Glorot-uniform initialized weight matrix of shape
    (output_dim, input_dim).

    Parameters
    ----------
    output_dim : int
        Number of rows (the width the weight projects to).
    input_dim : int or None
        Number of columns. None leaves the parameter uninitialized until
        `materialize_input_dim` is called with the observed input width.
    device : torch.device or None
        Device to place the parameter on.
    dtype : torch.dtype
        Element type.

    Returns
    -------
    nn.Parameter
        The weight (an UninitializedParameter when input_dim is None).
    """
    if output_dim <= 0:
        raise ValueError(f"output_dim must be positive, got {output_dim}")
    if input_dim is None:
        return UninitializedParameter(device=device, dtype=dtype)
    if input_dim <= 0:
        raise ValueError(f"input_dim must be positive, got {input_dim}")

    weight = nn.Parameter(torch.empty(output_dim, input_dim, device=device, dtype=dtype))
    nn.init.xavier_uniform_(weight)
    return weight


def vector_parameter(
    dim: int,
    device: Optional[torch.device] = None,
    dtype: torch.dtype = torch.float32,
) -> nn.Parameter:
    """Create a Glorot-uniform initialized vector of shape (dim,)."""
    if dim <= 0:
        raise ValueError(f"dim must be positive, got {dim}")
    # xavier_uniform_ needs two axes; fan_in = 1, fan_out = dim
    data = torch.empty(dim, 1, device=device, dtype=dtype)
    nn.init.xavier_uniform_(data)
    return nn.Parameter(data.reshape(dim))


def constant_parameter(
    shape: Union[int, tuple[int, ...]],
    value: float = 0.0,
    device: Optional[torch.device] = None,
    dtype: torch.dtype = torch.float32,
) -> nn.Parameter:
    """Create a parameter filled with a constant (used for biases)."""
    if isinstance(shape, int):
        shape = (shape,)
    return nn.Parameter(torch.full(shape, value, device=device, dtype=dtype))


def materialize_input_dim(weight: nn.Parameter, output_dim: int, input_dim: int) -> None:
    """
    Give an inferred-dimension weight its concrete shape.

    No-op for weights that are already materialized. The shape check
    against an existing weight is left to the matrix product itself.

    Parameters
    ----------
    weight : nn.Parameter
        A weight created by `glorot_parameter(output_dim)`.
    output_dim : int
        Row count of the weight.
    input_dim : int
        Observed input width.
    """
    if not isinstance(weight, UninitializedParameter):
        return
    weight.materialize((output_dim, input_dim))
    nn.init.xavier_uniform_(weight)
    logger.debug(f"Inferred weight shape ({output_dim}, {input_dim})")


# =============================================================================
# ParameterBlock
# =============================================================================

class ParameterBlock:
    """
    Named learnable parameters plus named references to nested blocks.

    The block is write-once: both mappings are fixed at construction and
    exposed read-only. Parameter values are still updated in place by an
    optimizer; only the structure is frozen.

    Parameters
    ----------
    parameters : mapping or iterable of (name, tensor) pairs
        The block's own parameters. Every name must be non-empty and
        unique.
    nested : mapping of name to ParameterBlock, or None
        Blocks of captured sub-models. The same block may be referenced
        by any number of parents.

    Raises
    ------
    ValueError
        If a parameter has an empty name or a name is used twice.
    """

    def __init__(
        self,
        parameters: ParameterSource = (),
        nested: Optional[Mapping[str, ParameterBlock]] = None,
    ):
        items = parameters.items() if isinstance(parameters, Mapping) else parameters

        own: dict[str, torch.Tensor] = {}
        for name, param in items:
            if not name:
                raise ValueError("parameters must be named")
            if name in own:
                raise ValueError(f"duplicate parameter name: {name}")
            own[name] = param

        children: dict[str, ParameterBlock] = {}
        for name, block in (nested or {}).items():
            if not isinstance(block, ParameterBlock):
                raise TypeError(
                    f"nested model '{name}' must be a ParameterBlock, "
                    f"got {type(block).__name__}"
                )
            children[name] = block

        self._parameters = MappingProxyType(own)
        self._nested = MappingProxyType(children)

    @property
    def own_parameters(self) -> Mapping[str, torch.Tensor]:
        """The block's own parameters by name (read-only)."""
        return self._parameters

    @property
    def nested_blocks(self) -> Mapping[str, ParameterBlock]:
        """The captured sub-model blocks by name (read-only)."""
        return self._nested

    def lookup(self, name: str) -> torch.Tensor:
        """
        Return the parameter called `name`.

        Raises
        ------
        KeyError
            If the block has no such parameter. There is no default.
        """
        try:
            return self._parameters[name]
        except KeyError:
            raise KeyError(f"no such parameter: {name!r}") from None

    def __getitem__(self, name: str) -> torch.Tensor:
        return self.lookup(name)

    def nested(self, name: str) -> ParameterBlock:
        """
        Return the block of the sub-model captured under `name`.

        Raises
        ------
        KeyError
            If no sub-model was captured under that name.
        """
        try:
            return self._nested[name]
        except KeyError:
            raise KeyError(f"no such nested model: {name!r}") from None

    def named_parameters(self, prefix: str = "") -> Iterator[tuple[str, torch.Tensor]]:
        """
        Yield (path, parameter) for every distinct reachable parameter.

        Order is deterministic: own parameters first, then nested blocks
        in capture order. A parameter reachable through several paths
        (a shared sub-block) is reported once, under its first path.
        """
        seen: set[int] = set()
        yield from self._walk(prefix, seen)

    def _walk(self, prefix: str, seen: set[int]) -> Iterator[tuple[str, torch.Tensor]]:
        for name, param in self._parameters.items():
            if id(param) in seen:
                continue
            seen.add(id(param))
            yield _join(prefix, name), param
        for name, block in self._nested.items():
            yield from block._walk(_join(prefix, name), seen)

    def parameters(self) -> list[torch.Tensor]:
        """All distinct reachable parameters, in `named_parameters` order."""
        return [param for _, param in self.named_parameters()]

    def find(self, path: str) -> torch.Tensor:
        """
        Resolve a dotted path such as "[1].step.W".

        Raises
        ------
        KeyError
            If any segment of the path does not exist.
        """
        *nested_names, name = _split(path)
        block = self
        for nested_name in nested_names:
            block = block.nested(nested_name)
        return block.lookup(name)

    def state_dict(self) -> dict[str, torch.Tensor]:
        """Detached copies of all parameter values keyed by path."""
        return {
            path: param.detach().clone()
            for path, param in self.named_parameters()
        }

    def load_state_dict(self, state: Mapping[str, torch.Tensor]) -> None:
        """
        Copy values into the block's parameters by path.

        Raises
        ------
        KeyError
            If a parameter of this block is missing from `state`.
        ValueError
            If a value's shape differs from the parameter's shape.
        """
        with torch.no_grad():
            for path, param in self.named_parameters():
                if path not in state:
                    raise KeyError(f"no value for parameter: {path!r}")
                value = state[path]
                if tuple(value.shape) != tuple(param.shape):
                    raise ValueError(
                        f"shape mismatch for {path!r}: expected "
                        f"{tuple(param.shape)}, got {tuple(value.shape)}"
                    )
                param.copy_(value.to(device=param.device, dtype=param.dtype))

    def __repr__(self) -> str:
        return (
            f"ParameterBlock(parameters={list(self._parameters)}, "
            f"nested={list(self._nested)})"
        )


def _join(prefix: str, name: str) -> str:
    if not prefix:
        return name
    return f"{prefix}.{name}"


def _split(path: str) -> list[str]:
    if not path:
        raise KeyError("no such parameter: ''")
    return path.split(".")


# =============================================================================
# Persistence
# =============================================================================

def save_parameters(block, path: Union[str, Path]) -> None:
    """
    Save every parameter of a block tree (or of a model's block) to a
    safetensors file.

    Keys are the dotted parameter paths; shared sub-blocks are written
    once.

    Raises
    ------
    ValueError
        If a parameter is still uninitialized (its layer was never
        applied).
    """
    from safetensors.torch import save_file

    block = getattr(block, "parameter_block", block)
    state = {}
    for name, param in block.named_parameters():
        if isinstance(param, UninitializedParameter):
            raise ValueError(
                f"cannot save uninitialized parameter {name!r}; "
                f"apply the model once to infer its shape"
            )
        state[name] = param.detach().cpu().contiguous()

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    save_file(state, str(path))
    logger.info(f"Saved {len(state)} parameters to {path}")


def load_parameters(block, path: Union[str, Path]) -> None:
    """
    Load parameter values saved by `save_parameters` into a block tree.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    from safetensors.torch import load_file

    block = getattr(block, "parameter_block", block)
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Parameter file not found: {path}")

    block.load_state_dict(load_file(str(path)))
    logger.info(f"Loaded parameters from {path}")
