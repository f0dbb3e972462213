#!/usr/bin/env python3
"""
Dynamite — Data Preparation Script
==================================
Generates the synthetic sequence-classification corpus and writes it as
JSON lines, one example per line:

    {"features": [12, 873, 5, ...], "label": 3}

This is Step 1 of the Dynamite pipeline.

Usage:
    python scripts/prepare_data.py --config configs/default.yaml
    python scripts/prepare_data.py --smoke-test  # Quick validation
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dynamite.config import DynamiteConfig
from dynamite.data.source import generate_synthetic_examples, save_examples
from dynamite.evaluation.metrics import Timer

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Dynamite Data Preparation")
    parser.add_argument(
        "--config", type=str, default="configs/default.yaml",
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--smoke-test", action="store_true",
        help="Generate a tiny corpus for quick validation",
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Override the output path (default: data.train_path)",
    )
    args = parser.parse_args()

    if args.smoke_test:
        config = DynamiteConfig.for_smoke_test()
    else:
        config = DynamiteConfig.from_yaml(args.config)

    output = Path(args.output or config.data.train_path)

    logger.info("=" * 60)
    logger.info("Generating synthetic corpus")
    logger.info("=" * 60)

    with Timer("Generation"):
        examples = generate_synthetic_examples(
            num_examples=config.data.num_examples,
            input_dim=config.model.input_dim,
            num_classes=config.model.num_output_classes,
            min_length=config.data.min_length,
            max_length=config.data.max_length,
            seed=config.training.seed,
            features_key=config.data.features_name,
            label_key=config.data.labels_key,
            progress=True,
        )

    save_examples(output, examples)

    total_words = sum(len(e[config.data.features_name]) for e in examples)
    logger.info(
        f"\nData preparation complete!"
        f"\n  Examples: {len(examples):,}"
        f"\n  Words: {total_words:,}"
        f"\n  Output: {output}"
    )


if __name__ == "__main__":
    main()
