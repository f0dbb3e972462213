"""
Parameter synchronization between model formulations.

Both formulations of the sequence classifier hold their own parameters.
Copying the reference model's values into the unrolled model lets the
two be compared on identical weights.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Union

import torch

from dynamite.model.base import Model
from dynamite.model.parameters import ParameterBlock

logger = logging.getLogger(__name__)

# unrolled classifier path -> static classifier path
DEFAULT_PARAMETER_MAPPING: dict[str, str] = {
    "embed.E": "[0].E",
    "step.W": "[1].step.W",
    "step.R": "[1].step.R",
    "step.b": "[1].step.b",
    "linear.W": "[2].W",
    "linear.b": "[2].b",
}


def _as_block(model: Union[Model, ParameterBlock]) -> ParameterBlock:
    if isinstance(model, Model):
        return model.parameter_block
    return model


def sync_parameters(
    target: Union[Model, ParameterBlock],
    source: Union[Model, ParameterBlock],
    mapping: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Copy parameter values from `source` into `target` by path.

    Raises
    ------
    KeyError
        If a path does not resolve in either model.
    ValueError
        If two mapped parameters differ in shape.
    """
    mapping = DEFAULT_PARAMETER_MAPPING if mapping is None else mapping
    target_block, source_block = _as_block(target), _as_block(source)

    with torch.no_grad():
        for target_path, source_path in mapping.items():
            dst = target_block.find(target_path)
            src = source_block.find(source_path)
            if dst.shape != src.shape:
                raise ValueError(
                    f"cannot copy {source_path!r} {tuple(src.shape)} into "
                    f"{target_path!r} {tuple(dst.shape)}"
                )
            dst.copy_(src)

    logger.debug(f"Synchronized {len(mapping)} parameters")
