#!/usr/bin/env python3
"""
Dynamite — Training Script
==========================
Trains the whole-sequence classifier and, on every minibatch, evaluates
the unrolled per-step formulation on the same parameters so the two can
be compared for agreement and speed.

This is Step 2 of the Dynamite pipeline.

Usage:
    python scripts/train.py --config configs/default.yaml
    python scripts/train.py --smoke-test
"""

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dynamite.config import DynamiteConfig
from dynamite.data.source import generate_synthetic_examples, load_examples
from dynamite.evaluation.metrics import MemoryTracker
from dynamite.training.driver import train_sequence_classifier

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def run(args: argparse.Namespace) -> None:
    if args.smoke_test:
        config = DynamiteConfig.for_smoke_test()
    else:
        config = DynamiteConfig.from_yaml(args.config)
    if args.device:
        config.training.device = args.device

    if args.smoke_test and not Path(config.data.train_path).exists():
        # smoke runs generate their own corpus in memory
        examples = generate_synthetic_examples(
            num_examples=config.data.num_examples,
            input_dim=config.model.input_dim,
            num_classes=config.model.num_output_classes,
            min_length=config.data.min_length,
            max_length=config.data.max_length,
            seed=config.training.seed,
            features_key=config.data.features_name,
            label_key=config.data.labels_key,
        )
    else:
        examples = load_examples(config.data.train_path)

    with MemoryTracker("Training", device=config.training.resolve_device()) as mem:
        results = train_sequence_classifier(config, examples)

    output_dir = Path(config.training.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    with open(output_dir / "results.json", "w") as f:
        json.dump({
            **results,
            "peak_memory_mb": mem.peak_mb,
            "device_peak_memory_mb": mem.device_peak_mb,
            "time_seconds": mem.duration_seconds,
        }, f, indent=2)

    logger.info(
        f"\nAll training complete!"
        f"\n  Minibatches: {results['minibatches']}"
        f"\n  Max |dynamic - static| loss: {results['max_loss_difference']}"
        f"\n  Peak memory: {mem.peak_mb:.1f}MB"
        f"\n  Outputs: {output_dir}/"
    )


def main():
    parser = argparse.ArgumentParser(
        description="Dynamite Training",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Full run:
    python scripts/train.py --config configs/default.yaml

    # Quick smoke test:
    python scripts/train.py --smoke-test

    # Force CPU:
    python scripts/train.py --config configs/default.yaml --device cpu
        """,
    )
    parser.add_argument("--config", type=str, default="configs/default.yaml")
    parser.add_argument("--smoke-test", action="store_true")
    parser.add_argument(
        "--device", type=str, default=None,
        help="Override training.device (auto, cpu, cuda, mps)",
    )
    args = parser.parse_args()

    try:
        run(args)
    except Exception as e:
        print(f"EXCEPTION caught: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
