"""
Dynamite Minibatch Source
=========================
Reads labelled token sequences and serves them as packed minibatches,
one stream per declared input.

Packing:
    Every stream of a minibatch is a zero-padded tensor of shape
    (num_sequences, max_len, dim) plus the true length of each sequence.
    Token ids are one-hot encoded, so a features stream over a 2000-word
    vocabulary packs to (B, T, 2000) and a label stream with 5 classes
    packs to (B, 1, 5).

Minibatch Size:
    Counted in samples (time steps of the features stream), the way the
    reference trainer's learning rate is defined per sample. Whole
    sequences are added until the next one would exceed the budget; a
    single over-long sequence still forms a minibatch on its own.

End of Data:
    `next_minibatch` returns an empty dict once `max_sweeps` full passes
    over the data have been served.

File Format:
    JSON lines, one example per line, keyed by stream alias:
        {"features": [12, 7, 1999, 3], "label": 2}

Usage:
    >>> streams = [
    ...     StreamConfiguration("features", 2000, is_sequence=True, alias="features"),
    ...     StreamConfiguration("labels", 5, is_sequence=False, alias="label"),
    ... ]
    >>> source = SequenceMinibatchSource(load_examples("data/train.jsonl"), streams)
    >>> mb = source.next_minibatch(200)
    >>> mb[source.stream_info("features")].number_of_sequences
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import numpy as np
import torch
from tqdm import tqdm

logger = logging.getLogger(__name__)

FULL_DATA_SWEEP = 1


# =============================================================================
# Stream declarations
# =============================================================================

@dataclass(frozen=True)
class StreamConfiguration:
    """
    Declaration of one input stream.

    Parameters
    ----------
    name : str
        Stream name used to look it up.
    dim : int
        One-hot width (vocabulary or class count).
    is_sequence : bool
        True for variable-length streams, False for one value per example.
    alias : str
        Key of the stream's values in each example. Defaults to `name`.
    """
    name: str
    dim: int
    is_sequence: bool = True
    alias: str = ""

    @property
    def key(self) -> str:
        return self.alias or self.name


@dataclass(frozen=True)
class StreamInfo:
    """Handle for a stream of a particular source; keys its minibatch data."""
    name: str
    dim: int
    is_sequence: bool
    stream_id: int


@dataclass(frozen=True)
class InputVariable:
    """
    Shape and axis metadata of a model input.

    A sequence input carries a sequence axis in addition to the batch
    axis; a non-sequence input carries the batch axis only.
    """
    name: str
    dim: int
    is_sequence: bool = True

    @property
    def dynamic_axes(self) -> tuple[str, ...]:
        if self.is_sequence:
            return ("batch", "sequence")
        return ("batch",)


# =============================================================================
# Packed minibatch data
# =============================================================================

@dataclass
class MinibatchData:
    """
    One stream of one minibatch.

    Attributes
    ----------
    data : torch.Tensor
        Zero-padded values, shape (num_sequences, max_len, dim).
    lengths : list[int]
        True length of each sequence.
    """
    data: torch.Tensor
    lengths: list[int] = field(default_factory=list)

    @property
    def number_of_sequences(self) -> int:
        return len(self.lengths)

    @property
    def number_of_samples(self) -> int:
        return sum(self.lengths)

    def unpack(
        self,
        variable: InputVariable,
        device: Optional[torch.device] = None,
    ) -> list[torch.Tensor]:
        """
        Split the packed tensor into one (length, dim) tensor per
        sequence, padding removed.

        Raises
        ------
        ValueError
            If the variable's width does not match the packed data.
        """
        dim = self.data.shape[-1]
        if variable.dim != dim:
            raise ValueError(
                f"variable '{variable.name}' has dim {variable.dim}, "
                f"but the packed data has dim {dim}"
            )
        return [
            self.data[s, :length].to(device) if device is not None else self.data[s, :length]
            for s, length in enumerate(self.lengths)
        ]

    def __repr__(self) -> str:
        return (
            f"MinibatchData(sequences={self.number_of_sequences}, "
            f"samples={self.number_of_samples}, shape={tuple(self.data.shape)})"
        )


# =============================================================================
# Source
# =============================================================================

class SequenceMinibatchSource:
    """
    Serves packed minibatches from a list of examples.

    Parameters
    ----------
    examples : list[dict]
        Examples keyed by stream alias. Sequence streams hold a list of
        token ids, non-sequence streams a single id.
    streams : list[StreamConfiguration]
        Declared streams. The first sequence stream determines the
        sample count used for minibatch sizing.
    max_sweeps : int
        Number of full passes before the source reports end of data.
    randomize : bool
        Shuffle example order at the start of every sweep.
    seed : int
        Seed for shuffling.

    Raises
    ------
    ValueError
        If there are no examples or no streams.
    """

    def __init__(
        self,
        examples: Sequence[dict[str, Any]],
        streams: Sequence[StreamConfiguration],
        max_sweeps: int = FULL_DATA_SWEEP,
        randomize: bool = False,
        seed: int = 42,
    ):
        if not examples:
            raise ValueError("Cannot create a minibatch source from no examples.")
        if not streams:
            raise ValueError("At least one stream must be declared.")
        if max_sweeps < 1:
            raise ValueError(f"max_sweeps must be >= 1, got {max_sweeps}")

        self.examples = list(examples)
        self.streams = list(streams)
        self.max_sweeps = max_sweeps
        self.randomize = randomize

        self._infos = {
            config.name: StreamInfo(config.name, config.dim, config.is_sequence, i)
            for i, config in enumerate(self.streams)
        }
        self._rng = np.random.default_rng(seed)
        self._sweep = 0
        self._position = 0
        self._order = self._new_order()

        logger.info(
            f"Minibatch source: {len(self.examples):,} sequences, "
            f"streams={[s.name for s in self.streams]}, sweeps={max_sweeps}"
        )

    def stream_info(self, name: str) -> StreamInfo:
        """Look up a declared stream by name; KeyError if unknown."""
        try:
            return self._infos[name]
        except KeyError:
            raise KeyError(f"no such stream: {name!r}") from None

    def next_minibatch(
        self,
        minibatch_size: int,
        device: Optional[torch.device] = None,
    ) -> dict[StreamInfo, MinibatchData]:
        """
        Return the next minibatch, or an empty dict at end of data.

        Parameters
        ----------
        minibatch_size : int
            Sample budget (time steps of the sizing stream).
        device : torch.device or None
            Device for the packed tensors.
        """
        if minibatch_size < 1:
            raise ValueError(f"minibatch_size must be >= 1, got {minibatch_size}")

        selected: list[dict[str, Any]] = []
        samples = 0
        while self._sweep < self.max_sweeps:
            if self._position == len(self._order):
                self._sweep += 1
                self._position = 0
                self._order = self._new_order()
                # minibatches never straddle a sweep boundary
                if selected:
                    break
                continue

            example = self.examples[self._order[self._position]]
            length = self._sample_count(example)
            if selected and samples + length > minibatch_size:
                break
            selected.append(example)
            samples += length
            self._position += 1

        if not selected:
            return {}

        return {
            self._infos[config.name]: self._pack(config, selected, device)
            for config in self.streams
        }

    def _new_order(self) -> np.ndarray:
        if self.randomize:
            return self._rng.permutation(len(self.examples))
        return np.arange(len(self.examples))

    def _sample_count(self, example: dict[str, Any]) -> int:
        for config in self.streams:
            if config.is_sequence:
                return len(example[config.key])
        return 1

    @staticmethod
    def _pack(
        config: StreamConfiguration,
        examples: list[dict[str, Any]],
        device: Optional[torch.device],
    ) -> MinibatchData:
        values = [
            list(example[config.key]) if config.is_sequence else [example[config.key]]
            for example in examples
        ]
        lengths = [len(v) for v in values]
        if min(lengths) == 0:
            raise ValueError(f"stream '{config.name}' contains an empty sequence")

        data = torch.zeros(len(values), max(lengths), config.dim, device=device)
        for s, ids in enumerate(values):
            ids_tensor = torch.as_tensor(ids, dtype=torch.long)
            if ids_tensor.min() < 0 or ids_tensor.max() >= config.dim:
                raise ValueError(
                    f"stream '{config.name}' has an id outside [0, {config.dim})"
                )
            positions = torch.arange(len(ids), device=data.device)
            data[s, positions, ids_tensor.to(data.device)] = 1.0
        return MinibatchData(data=data, lengths=lengths)

    def __repr__(self) -> str:
        return (
            f"SequenceMinibatchSource(sequences={len(self.examples):,}, "
            f"sweep={self._sweep}/{self.max_sweeps})"
        )


# =============================================================================
# Example files
# =============================================================================

def load_examples(path: Union[str, Path]) -> list[dict[str, Any]]:
    """
    Load examples from a JSON-lines file (blank lines are skipped).

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(
            f"Training data not found: {path}. "
            f"Run scripts/prepare_data.py first."
        )

    examples = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                examples.append(json.loads(line))

    logger.info(f"Loaded {len(examples):,} examples from {path}")
    return examples


def save_examples(path: Union[str, Path], examples: Sequence[dict[str, Any]]) -> None:
    """Write examples as JSON lines, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for example in examples:
            f.write(json.dumps(example) + "\n")
    logger.info(f"Saved {len(examples):,} examples to {path}")


def generate_synthetic_examples(
    num_examples: int,
    input_dim: int,
    num_classes: int,
    min_length: int = 3,
    max_length: int = 20,
    signal_ratio: float = 0.7,
    seed: int = 42,
    features_key: str = "features",
    label_key: str = "label",
    progress: bool = False,
) -> list[dict[str, Any]]:
    """
    Build a learnable toy sequence-classification task.

    The vocabulary is split into `num_classes` contiguous bands. An
    example of class c draws each token from band c with probability
    `signal_ratio` and uniformly from the whole vocabulary otherwise.

    Returns
    -------
    list[dict]
        Examples of the form {features_key: [ids], label_key: c}.
    """
    if num_classes < 1 or input_dim < num_classes:
        raise ValueError(
            f"need 1 <= num_classes <= input_dim, got num_classes={num_classes}, "
            f"input_dim={input_dim}"
        )
    if not 1 <= min_length <= max_length:
        raise ValueError(
            f"need 1 <= min_length <= max_length, got {min_length}, {max_length}"
        )
    if not 0.0 <= signal_ratio <= 1.0:
        raise ValueError(f"signal_ratio must be in [0, 1], got {signal_ratio}")

    rng = np.random.default_rng(seed)
    band = input_dim // num_classes

    examples = []
    for _ in tqdm(range(num_examples), desc="Generating", disable=not progress):
        label = int(rng.integers(num_classes))
        length = int(rng.integers(min_length, max_length + 1))
        in_band = rng.random(length) < signal_ratio
        band_ids = rng.integers(label * band, (label + 1) * band, size=length)
        noise_ids = rng.integers(0, input_dim, size=length)
        ids = np.where(in_band, band_ids, noise_ids)
        examples.append({features_key: ids.tolist(), label_key: label})

    return examples
