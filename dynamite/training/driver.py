"""
Dynamite Training Driver
========================
Trains the reference classifier minibatch by minibatch while
evaluating the unrolled (dynamic) formulation on the same data, so the
two can be compared for agreement and speed.

Per Minibatch:
    1. Fetch the next packed minibatch (stop at end of data)
    2. Adapt it into per-sequence tensors (timed)
    3. Dynamic: evaluate the unrolled criterion; from the second
       minibatch on, copy the reference parameters into the unrolled
       model first and re-evaluate `timing_repeats` times under a timer
    4. Optionally evaluate the seq2seq auto-encoder loss
    5. Reference: one training step, then `timing_repeats` more under a
       timer; log progress

Usage:
    >>> config = DynamiteConfig.for_smoke_test()
    >>> results = train_sequence_classifier(config, examples)
    >>> results["static_losses"][-1]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import torch

from dynamite.config import DynamiteConfig
from dynamite.data.adapter import explode_sequences, from_packed_minibatch
from dynamite.data.source import (
    InputVariable,
    SequenceMinibatchSource,
    StreamConfiguration,
    load_examples,
)
from dynamite.evaluation.metrics import Timer
from dynamite.model.base import Batch
from dynamite.model.networks import (
    create_criterion_function_unrolled,
    create_model_function,
    create_model_function_s2s_att,
    create_model_function_unrolled,
)
from dynamite.model.parameters import save_parameters
from dynamite.training.sync import sync_parameters
from dynamite.training.trainer import StaticTrainer

logger = logging.getLogger(__name__)


@torch.no_grad()
def evaluate_criterion(
    criterion: Callable[[Sequence[torch.Tensor], Sequence[torch.Tensor]], torch.Tensor],
    features: Sequence[torch.Tensor],
    labels: Sequence[torch.Tensor],
) -> torch.Tensor:
    """Minibatch loss of `criterion` without recording a backward graph."""
    return criterion(features, labels)


def build_streams(config: DynamiteConfig) -> list[StreamConfiguration]:
    """Features (sequence) and labels (one per example) streams."""
    return [
        StreamConfiguration(
            config.data.features_name,
            config.model.input_dim,
            is_sequence=True,
        ),
        StreamConfiguration(
            config.data.labels_name,
            config.model.num_output_classes,
            is_sequence=False,
            alias=config.data.labels_key,
        ),
    ]


def build_variables(config: DynamiteConfig) -> list[InputVariable]:
    return [
        InputVariable(config.data.features_name, config.model.input_dim, is_sequence=True),
        InputVariable(
            config.data.labels_name, config.model.num_output_classes, is_sequence=False
        ),
    ]


def train_sequence_classifier(
    config: DynamiteConfig,
    examples: Optional[Sequence[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """
    Run the full comparison loop.

    Parameters
    ----------
    config : DynamiteConfig
        Experiment configuration.
    examples : list[dict] or None
        Training examples. Loaded from `config.data.train_path` if None.

    Returns
    -------
    dict
        - minibatches: number of minibatches processed
        - static_losses: reference loss per sequence, per minibatch
        - dynamic_losses: unrolled loss per sequence, per minibatch
          (empty when comparison is disabled)
        - max_loss_difference: largest |dynamic - reference| seen on
          synchronized parameters (None before the first sync)
        - seq2seq_losses: auto-encoder loss per sample, per minibatch
        - dynamic_seconds / static_seconds: total timed seconds
        - checkpoint_path: saved parameter file or None
    """
    config.validate()
    mc, tc = config.model, config.training

    device = tc.resolve_device()
    torch.manual_seed(tc.seed)

    # dynamic model and criterion function
    d_model = create_model_function_unrolled(
        mc.num_output_classes, mc.embedding_dim, mc.hidden_dim,
        input_dim=mc.input_dim, device=device,
    )
    d_criterion = create_criterion_function_unrolled(d_model)
    s2s_model = None
    if tc.run_seq2seq:
        # auto-encoder over the features stream, so the output vocabulary
        # is the input vocabulary
        s2s_model = create_model_function_s2s_att(
            mc.input_dim, mc.embedding_dim, 2 * mc.hidden_dim, mc.attention_dim,
            input_dim=mc.input_dim, bidirectional=mc.bidirectional_encoder,
            device=device,
        )

    # reference model and trainer
    model = create_model_function(
        mc.num_output_classes, mc.embedding_dim, mc.hidden_dim,
        input_dim=mc.input_dim, device=device,
    )
    trainer = StaticTrainer(
        model, learning_rate=tc.learning_rate, log_every=tc.log_every
    )

    # data
    if examples is None:
        examples = load_examples(config.data.train_path)
    source = SequenceMinibatchSource(
        examples,
        build_streams(config),
        max_sweeps=tc.max_sweeps,
        randomize=config.data.randomize,
        seed=tc.seed,
    )
    features_info = source.stream_info(config.data.features_name)
    labels_info = source.stream_info(config.data.labels_name)
    variables = build_variables(config)

    results: dict[str, Any] = {
        "minibatches": 0,
        "static_losses": [],
        "dynamic_losses": [],
        "max_loss_difference": None,
        "seq2seq_losses": [],
        "dynamic_seconds": 0.0,
        "static_seconds": 0.0,
        "checkpoint_path": None,
    }

    logger.info(f"Starting training on {device}:\n{config}")

    repeats = 0
    while True:
        minibatch = source.next_minibatch(tc.minibatch_size, device)
        if not minibatch:
            break

        features_mb = minibatch[features_info]
        labels_mb = minibatch[labels_info]
        num_sequences = features_mb.number_of_sequences
        logger.info(
            f"#seq: {num_sequences}, #words: {features_mb.number_of_samples}"
        )

        with Timer("from_packed_minibatch"):
            features, labels = from_packed_minibatch(
                [features_mb, labels_mb], variables, device
            )

        # dynamic
        if tc.compare_dynamic:
            if repeats > 0:
                sync_parameters(d_model, model)
            mb_loss = evaluate_criterion(d_criterion, features, labels).item()
            if repeats > 0:
                with Timer("dynamic criterion", repeats=tc.timing_repeats) as timer:
                    for _ in range(tc.timing_repeats):
                        mb_loss = evaluate_criterion(d_criterion, features, labels).item()
                results["dynamic_seconds"] += timer.elapsed

                # same weights, same data: the formulations must agree
                reference = trainer.evaluate(features, labels)
                difference = abs(mb_loss / num_sequences - reference)
                previous = results["max_loss_difference"] or 0.0
                results["max_loss_difference"] = max(previous, difference)
                logger.info(
                    f"dynamic loss/seq={mb_loss / num_sequences:.6f}, "
                    f"reference={reference:.6f}, |diff|={difference:.2e}"
                )
            results["dynamic_losses"].append(mb_loss / num_sequences)

        if s2s_model is not None:
            steps = explode_sequences(features)
            s2s_loss = Batch.sum(Batch.mapper(s2s_model)(steps, steps)).item()
            results["seq2seq_losses"].append(s2s_loss / features_mb.number_of_samples)
            logger.info(
                f"seq2seq auto-encoder loss/word="
                f"{s2s_loss / features_mb.number_of_samples:.6f}"
            )

        # reference
        trainer.train_minibatch(features, labels)
        if tc.timing_repeats > 0:
            with Timer("static trainer", repeats=tc.timing_repeats) as timer:
                for _ in range(tc.timing_repeats):
                    trainer.train_minibatch(features, labels)
            results["static_seconds"] += timer.elapsed
        results["static_losses"].append(trainer.previous_minibatch_loss_average)
        trainer.log_progress(repeats)

        repeats += 1

    results["minibatches"] = repeats
    logger.info(f"Training complete: {repeats} minibatches")

    if tc.save_checkpoint:
        path = Path(tc.output_dir) / "static_model.safetensors"
        save_parameters(model, path)
        results["checkpoint_path"] = str(path)

    return results
