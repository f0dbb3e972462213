"""
Dynamite Configuration System
=============================
Centralized configuration for the sequence-classification experiment
using Python dataclasses. Model sizes, training settings and data
locations all live here.

Usage:
    # Load from YAML file:
    >>> config = DynamiteConfig.from_yaml("configs/default.yaml")

    # Create programmatically:
    >>> config = DynamiteConfig(
    ...     model=ModelConfig(hidden_dim=32),
    ...     training=TrainingConfig(learning_rate=0.01),
    ... )

    # Save to YAML:
    >>> config.to_yaml("configs/my_experiment.yaml")

    # Access nested values:
    >>> config.model.embedding_dim      # 50
    >>> config.training.minibatch_size  # 200
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

import torch
import yaml

logger = logging.getLogger(__name__)


# =============================================================================
# Model Configuration
# =============================================================================

@dataclass
class ModelConfig:
    """
    Layer widths shared by the static, unrolled and seq2seq models.

    Parameters
    ----------
    input_dim : int
        Vocabulary size of the features stream (one-hot width).

    embedding_dim : int
        Width of the token embeddings.

    hidden_dim : int
        State width of the RNN steps.

    attention_dim : int
        Width of the attention space in the seq2seq model.

    num_output_classes : int
        Number of classes of the labels stream.

    bidirectional_encoder : bool
        Encode with a BiRecurrence in the seq2seq model. Off by default.
    """
    input_dim: int = 2000
    embedding_dim: int = 50
    hidden_dim: int = 25
    attention_dim: int = 20
    num_output_classes: int = 5
    bidirectional_encoder: bool = False

    def validate(self) -> None:
        """
        Check that all widths are positive.

        Raises
        ------
        ValueError
            If any width is not positive or there are fewer than two
            classes.
        """
        for name in ("input_dim", "embedding_dim", "hidden_dim", "attention_dim"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.num_output_classes < 2:
            raise ValueError(
                f"num_output_classes must be >= 2, got {self.num_output_classes}"
            )

    @property
    def classifier_params(self) -> int:
        """Parameter count of the sequence classifier."""
        embed = self.embedding_dim * self.input_dim
        step = self.hidden_dim * (self.embedding_dim + self.hidden_dim + 1)
        linear = self.num_output_classes * (self.hidden_dim + 1)
        return embed + step + linear


# =============================================================================
# Training Configuration
# =============================================================================

@dataclass
class TrainingConfig:
    """
    Settings for the training driver.

    Parameters
    ----------
    learning_rate : float
        Per-sample SGD learning rate of the reference trainer. The
        minibatch loss is a sum over sequences, so this is applied to the
        summed gradient.

    minibatch_size : int
        Minibatch size in samples (time steps of the features stream).

    max_sweeps : int
        Number of full passes over the training data.

    timing_repeats : int
        How many times the dynamic criterion and the reference training
        step are repeated under a timer per minibatch. 0 disables timing.

    compare_dynamic : bool
        Evaluate the unrolled (dynamic) criterion alongside training.

    run_seq2seq : bool
        Also evaluate the seq2seq-with-attention model as an
        auto-encoder on the features stream.

    seed : int
        Random seed for parameter initialization and data order.

    device : str
        "auto", "cpu", "cuda" or "mps".

    log_every : int
        Log training progress every N minibatches (0 = never).

    save_checkpoint : bool
        Save the trained parameters (safetensors) at the end.

    output_dir : str
        Directory for checkpoints and results.
    """
    learning_rate: float = 0.05
    minibatch_size: int = 200
    max_sweeps: int = 1
    timing_repeats: int = 10
    compare_dynamic: bool = True
    run_seq2seq: bool = False
    seed: int = 42
    device: str = "auto"
    log_every: int = 1
    save_checkpoint: bool = False
    output_dir: str = "outputs"

    def validate(self) -> None:
        """Validate training parameters."""
        if self.learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be positive, got {self.learning_rate}"
            )
        if self.minibatch_size < 1:
            raise ValueError(
                f"minibatch_size must be >= 1, got {self.minibatch_size}"
            )
        if self.max_sweeps < 1:
            raise ValueError(f"max_sweeps must be >= 1, got {self.max_sweeps}")
        if self.timing_repeats < 0:
            raise ValueError(
                f"timing_repeats must be >= 0, got {self.timing_repeats}"
            )
        if self.log_every < 0:
            raise ValueError(f"log_every must be >= 0, got {self.log_every}")
        if self.device not in ("auto", "cpu", "cuda", "mps"):
            raise ValueError(
                f"Unknown device: '{self.device}'. "
                f"Choose from: auto, cpu, cuda, mps"
            )

    def resolve_device(self) -> torch.device:
        """
        Auto-detect the best available device.

        Priority: CUDA > MPS (Apple Silicon) > CPU

        Returns
        -------
        torch.device
            The resolved device.
        """
        if self.device != "auto":
            return torch.device(self.device)

        if torch.cuda.is_available():
            logger.info("Using CUDA device (GPU detected)")
            return torch.device("cuda")
        elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            logger.info("Using MPS device (Apple Silicon detected)")
            return torch.device("mps")
        else:
            logger.info("Using CPU device")
            return torch.device("cpu")


# =============================================================================
# Data Configuration
# =============================================================================

@dataclass
class DataConfig:
    """
    Location and stream layout of the training data, plus settings of
    the synthetic task written by scripts/prepare_data.py.

    Parameters
    ----------
    train_path : str
        JSON-lines training file.

    features_name : str
        Name of the features stream (also its key in each example).

    labels_name : str
        Name of the labels stream.

    labels_key : str
        Key of the label in each example.

    randomize : bool
        Shuffle example order every sweep.

    num_examples : int
        Number of synthetic examples to generate.

    min_length, max_length : int
        Length range of synthetic sequences.
    """
    train_path: str = "data/train.jsonl"
    features_name: str = "features"
    labels_name: str = "labels"
    labels_key: str = "label"
    randomize: bool = False
    num_examples: int = 5000
    min_length: int = 3
    max_length: int = 20

    def validate(self) -> None:
        """Validate data parameters."""
        if self.features_name == self.labels_name:
            raise ValueError(
                f"features_name and labels_name must differ, both are "
                f"'{self.features_name}'"
            )
        if self.num_examples < 1:
            raise ValueError(f"num_examples must be >= 1, got {self.num_examples}")
        if not 1 <= self.min_length <= self.max_length:
            raise ValueError(
                f"need 1 <= min_length <= max_length, got "
                f"{self.min_length}, {self.max_length}"
            )


# =============================================================================
# Master Configuration
# =============================================================================

@dataclass
class DynamiteConfig:
    """
    Master configuration combining all sub-configurations.

    Usage:
        >>> config = DynamiteConfig.from_yaml("configs/default.yaml")
        >>> config = DynamiteConfig()
        >>> config.validate()
    """
    model: ModelConfig = field(default_factory=ModelConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    data: DataConfig = field(default_factory=DataConfig)

    def validate(self) -> None:
        """
        Validate all sub-configurations.

        Raises
        ------
        ValueError
            If any parameter is invalid.
        """
        self.model.validate()
        self.training.validate()
        self.data.validate()

        logger.info(
            f"Config validated: {self.model.classifier_params / 1e3:.1f}K "
            f"classifier params, device={self.training.device}"
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> DynamiteConfig:
        """
        Load configuration from a YAML file.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ValueError
            If the file is empty or holds invalid values.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise ValueError(f"Config file is empty: {path}")

        config = cls(
            model=ModelConfig(**raw.get("model", {})),
            training=TrainingConfig(**raw.get("training", {})),
            data=DataConfig(**raw.get("data", {})),
        )

        config.validate()
        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                asdict(self),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)

    @classmethod
    def for_smoke_test(cls) -> DynamiteConfig:
        """
        Tiny configuration that runs end to end in seconds on a CPU.

        Returns
        -------
        DynamiteConfig
            Smoke-test configuration.
        """
        return cls(
            model=ModelConfig(
                input_dim=40,
                embedding_dim=8,
                hidden_dim=6,
                attention_dim=4,
                num_output_classes=3,
            ),
            training=TrainingConfig(
                learning_rate=0.05,
                minibatch_size=30,
                max_sweeps=1,
                timing_repeats=1,
                compare_dynamic=True,
                run_seq2seq=True,
                seed=42,
                device="cpu",
                log_every=1,
                save_checkpoint=False,
                output_dir="outputs_smoke",
            ),
            data=DataConfig(
                train_path="data_smoke/train.jsonl",
                num_examples=40,
                min_length=2,
                max_length=6,
            ),
        )

    def __repr__(self) -> str:
        """Pretty-print the configuration."""
        lines = [
            "DynamiteConfig(",
            f"  Model:    input={self.model.input_dim}, "
            f"embed={self.model.embedding_dim}, hidden={self.model.hidden_dim}, "
            f"attention={self.model.attention_dim}, "
            f"classes={self.model.num_output_classes}",
            f"  Training: lr={self.training.learning_rate}, "
            f"minibatch={self.training.minibatch_size} samples, "
            f"sweeps={self.training.max_sweeps}, "
            f"repeats={self.training.timing_repeats}",
            f"  Data:     {self.data.train_path}",
            f"  Device:   {self.training.device}",
            ")",
        ]
        return "\n".join(lines)
