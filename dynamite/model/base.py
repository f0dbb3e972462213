"""
Dynamite Model Shapes and Batching
==================================
The composition unit of Dynamite is a Model: a callable tensor function
that owns (or shares) a ParameterBlock. There are exactly four call
shapes, each an explicit class:

    UnaryModel            f(x)          -> tensor
    BinaryModel           f(a, b)       -> tensor
    UnarySequenceModel    f(seq)        -> list of tensors
    BinarySequenceModel   f(seq, seq)   -> list of tensors

A model is either built from a plain function (closures are fine) or
subclassed with an `apply` method; layer kinds in `layers.py` are
subclasses. Calling a model runs `apply` against PyTorch eagerly, so the
graph is built and evaluated in the same step.

Batch lifts per-item models to lists of items. It never batches tensor
math itself: mapping is element-wise at the call site, which is what
makes the per-example graphs dynamic.

Usage:
    >>> double = UnaryModel(lambda x: 2 * x)
    >>> Batch.map(double, [torch.ones(2), torch.zeros(2)])
    [tensor([2., 2.]), tensor([0., 0.])]
    >>> add = Batch.mapper(BinaryModel(lambda a, b: a + b))
    >>> add([torch.ones(2)], [torch.ones(2)])
    [tensor([2., 2.])]
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import torch

from dynamite.model.parameters import ParameterBlock, ParameterSource

logger = logging.getLogger(__name__)


class Model:
    """
    Base of the four model shapes.

    Parameters
    ----------
    fn : callable or None
        The tensor function. Subclasses that override `apply` pass None.
    parameters : mapping or iterable of (name, tensor) pairs
        Parameters owned by this model.
    nested : mapping of name to Model or ParameterBlock, or None
        Sub-models whose parameters should stay reachable by path from
        this model. Models are captured by their block.
    block : ParameterBlock or None
        Share an existing block instead of building one. Cannot be
        combined with `parameters` or `nested`.
    """

    def __init__(
        self,
        fn: Optional[Callable[..., Any]] = None,
        parameters: ParameterSource = (),
        nested: Optional[Mapping[str, Union[Model, ParameterBlock]]] = None,
        *,
        block: Optional[ParameterBlock] = None,
    ):
        self._fn = fn
        if block is not None:
            if parameters or nested:
                raise ValueError(
                    "a model sharing an existing parameter block cannot "
                    "declare its own parameters or nested models"
                )
            self._block = block
        else:
            captured = {
                name: _block_of(child) for name, child in (nested or {}).items()
            }
            self._block = ParameterBlock(parameters, captured)

    def apply(self, *args: Any) -> Any:
        """Evaluate the model. Subclasses without a wrapped function override this."""
        if self._fn is None:
            raise NotImplementedError(
                f"{type(self).__name__} has no function; override apply()"
            )
        return self._fn(*args)

    @property
    def parameter_block(self) -> ParameterBlock:
        """The model's ParameterBlock, for capture by parent models."""
        return self._block

    def lookup(self, name: str) -> torch.Tensor:
        """Own parameter by name; KeyError if absent."""
        return self._block.lookup(name)

    def __getitem__(self, name: str) -> torch.Tensor:
        return self._block.lookup(name)

    def nested(self, name: str) -> ParameterBlock:
        """Block of a captured sub-model; KeyError if absent."""
        return self._block.nested(name)

    def parameters(self) -> list[torch.Tensor]:
        return self._block.parameters()

    def named_parameters(self, prefix: str = ""):
        return self._block.named_parameters(prefix)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}("
            f"parameters={list(self._block.own_parameters)}, "
            f"nested={list(self._block.nested_blocks)})"
        )


def _block_of(child: Union[Model, ParameterBlock]) -> ParameterBlock:
    if isinstance(child, Model):
        return child.parameter_block
    return child


class UnaryModel(Model):
    """x -> tensor."""

    def __call__(self, x: torch.Tensor) -> torch.Tensor:
        return self.apply(x)


class BinaryModel(Model):
    """(a, b) -> tensor. Recurrent steps take (previous_state, input)."""

    def __call__(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        return self.apply(a, b)


class UnarySequenceModel(Model):
    """list of tensors -> list of tensors."""

    def __call__(self, seq: Sequence[torch.Tensor]) -> list[torch.Tensor]:
        return self.apply(seq)


class BinarySequenceModel(Model):
    """(list of tensors, list of tensors) -> list of tensors."""

    def __call__(
        self,
        xs: Sequence[torch.Tensor],
        ys: Sequence[torch.Tensor],
    ) -> list[torch.Tensor]:
        return self.apply(xs, ys)


class UnaryBroadcastingModel(UnaryModel):
    """
    A unary model that accepts either one item or a list of items.

    A single tensor is passed to `apply`; a list (or tuple) is mapped
    item by item with `Batch.map`. Items may themselves be lists, so a
    batch of sequences is handled by the same call.

    Example
    -------
    >>> embed = Embedding(50, input_dim=2000)
    >>> embed(x)                  # (50,)
    >>> embed([x0, x1, x2])       # [(50,), (50,), (50,)]
    """

    @classmethod
    def wrap(cls, model: UnaryModel) -> UnaryBroadcastingModel:
        """Broadcasting view of an existing unary model, sharing its block."""
        return cls(model, block=model.parameter_block)

    def __call__(self, x):
        if isinstance(x, (list, tuple)):
            return Batch.map(self, x)
        return self.apply(x)


# =============================================================================
# Batch
# =============================================================================

class Batch:
    """
    Lift per-item models to batches (lists) of items.

    All methods are static; Batch holds no state.
    """

    @staticmethod
    def map(model: Callable[[Any], Any], batch: Sequence[Any]) -> list[Any]:
        """Apply a unary model to each item, preserving order and length."""
        return [model(item) for item in batch]

    @staticmethod
    def mapper(model: Model) -> Callable[..., list[Any]]:
        """
        Return a reusable batch function closed over `model`.

        Unary and unary-sequence models get a one-argument mapper.
        Binary and binary-sequence models get a two-argument mapper that
        pairs items by index; both batches must have the same length.
        Nothing is cached: each call applies the model afresh.

        Raises
        ------
        ValueError
            (from the returned function) if paired batches differ in
            length.
        """
        if isinstance(model, (BinaryModel, BinarySequenceModel)):
            def map_pairs(xs: Sequence[Any], ys: Sequence[Any]) -> list[Any]:
                _check_same_length(xs, ys)
                return [model(x, y) for x, y in zip(xs, ys)]
            return map_pairs

        def map_items(batch: Sequence[Any]) -> list[Any]:
            return [model(item) for item in batch]
        return map_items

    @staticmethod
    def sum(batch: Sequence[Any]) -> torch.Tensor:
        """
        Sum a list of equal-shaped tensors.

        The tensors are stacked along a new trailing axis, reduced over
        that axis, and reshaped back to the per-item shape. A batch of
        sequences (list of lists) is flattened first.

        Raises
        ------
        ValueError
            If the batch is empty.
        """
        items = []
        for item in batch:
            if isinstance(item, (list, tuple)):
                items.extend(item)
            else:
                items.append(item)
        if not items:
            raise ValueError("cannot sum an empty batch")

        shape = items[0].shape
        axis = len(shape)  # new trailing axis
        return torch.stack(items, dim=axis).sum(dim=axis).reshape(shape)


def _check_same_length(xs: Sequence[Any], ys: Sequence[Any]) -> None:
    if len(xs) != len(ys):
        raise ValueError(
            f"batch size mismatch: {len(xs)} items paired with {len(ys)} items"
        )
