"""
Dynamite Reference Trainer
==========================
Optimizer-driven training of the whole-sequence (static) classifier.
This is the baseline the dynamic formulation is compared against: it
trains the parameters, and the driver copies them into the unrolled
model before each comparison.

What This Handles:
    - Per-example forward pass and cross-entropy loss
    - Summing losses over the minibatch (per-sample learning rate)
    - SGD update
    - Minibatch loss and classification-error averages
    - Progress logging

Usage:
    >>> model = create_model_function(5, 50, 25, input_dim=2000)
    >>> trainer = StaticTrainer(model, learning_rate=0.05)
    >>> trainer.train_minibatch(features, labels)
    >>> trainer.previous_minibatch_loss_average
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

import torch
from torch.nn.parameter import UninitializedParameter

from dynamite.evaluation.metrics import classification_error
from dynamite.model.base import UnaryModel
from dynamite.model.ops import collate_losses, cross_entropy_with_softmax

logger = logging.getLogger(__name__)


class StaticTrainer:
    """
    SGD trainer for a unary model over minibatches of (features, labels).

    Parameters
    ----------
    model : UnaryModel
        Maps one example's features to class logits.
    learning_rate : float
        Per-sample learning rate; applied to the summed minibatch loss.
    loss_fn : callable
        (logits, one-hot label) -> scalar loss.
    name : str
        Name used in log lines.
    log_every : int
        Log progress every N minibatches (0 = never).

    Raises
    ------
    ValueError
        If the model has no parameters or some are still uninitialized.
    """

    def __init__(
        self,
        model: UnaryModel,
        learning_rate: float = 0.05,
        loss_fn: Callable[[torch.Tensor, torch.Tensor], torch.Tensor] = cross_entropy_with_softmax,
        name: str = "static",
        log_every: int = 1,
    ):
        self.model = model
        self.loss_fn = loss_fn
        self.name = name
        self.log_every = log_every

        params = model.parameters()
        if not params:
            raise ValueError("No trainable parameters found in the model.")
        uninitialized = [
            path for path, p in model.named_parameters()
            if isinstance(p, UninitializedParameter)
        ]
        if uninitialized:
            raise ValueError(
                f"Parameters with inferred shapes must be materialized before "
                f"training: {uninitialized}. Declare the input width or apply "
                f"the model once."
            )

        self.optimizer = torch.optim.SGD(params, lr=learning_rate)

        self.minibatches_seen = 0
        self.previous_minibatch_loss_average = float("nan")
        self.previous_minibatch_evaluation_average = float("nan")
        self.previous_minibatch_sample_count = 0

        logger.info(
            f"Trainer '{name}' initialized with "
            f"{sum(p.numel() for p in params) / 1e3:.1f}K parameters, "
            f"lr={learning_rate}"
        )

    def _forward(
        self,
        features: Sequence[torch.Tensor],
        labels: Sequence[torch.Tensor],
    ) -> tuple[torch.Tensor, float]:
        if len(features) != len(labels):
            raise ValueError(
                f"batch size mismatch: {len(features)} feature sequences, "
                f"{len(labels)} labels"
            )
        if not features:
            raise ValueError("cannot train on an empty minibatch")

        losses = []
        errors = 0.0
        for x, y in zip(features, labels):
            z = self.model(x)
            losses.append(self.loss_fn(z, y))
            errors += classification_error(z.detach(), y).item()
        return collate_losses(losses), errors

    def train_minibatch(
        self,
        features: Sequence[torch.Tensor],
        labels: Sequence[torch.Tensor],
    ) -> float:
        """
        One SGD step on a minibatch.

        Returns
        -------
        float
            Summed loss over the minibatch (before the update).
        """
        self.optimizer.zero_grad()
        loss, errors = self._forward(features, labels)
        loss.backward()
        self.optimizer.step()

        total = loss.item()
        count = len(features)
        self.minibatches_seen += 1
        self.previous_minibatch_sample_count = count
        self.previous_minibatch_loss_average = total / count
        self.previous_minibatch_evaluation_average = errors / count
        return total

    @torch.no_grad()
    def evaluate(
        self,
        features: Sequence[torch.Tensor],
        labels: Sequence[torch.Tensor],
    ) -> float:
        """Average per-sequence loss without updating parameters."""
        loss, _ = self._forward(features, labels)
        return loss.item() / len(features)

    def log_progress(self, minibatch_idx: int) -> None:
        """Log the last minibatch's averages every `log_every` minibatches."""
        if self.log_every <= 0 or (minibatch_idx + 1) % self.log_every != 0:
            return
        logger.info(
            f"[{self.name}] Minibatch: {minibatch_idx}, "
            f"Loss: {self.previous_minibatch_loss_average:.6f}, "
            f"Evaluation criterion: {self.previous_minibatch_evaluation_average:.6f}"
        )

    def __repr__(self) -> str:
        return f"StaticTrainer(name={self.name}, minibatches={self.minibatches_seen})"
