"""
Dynamite
========
A dynamic (define-by-run) model composition layer on top of PyTorch.

Models are named, parameterized tensor functions (embedding, RNN step,
linear projection, attention, recurrence and fold) that compose into
larger models while keeping every parameter discoverable by path. The
same models are used in two formulations: an unrolled, per-example
dynamic formulation and a whole-sequence reference formulation trained
by a regular optimizer, so the two can be cross-checked and timed.

Quick Start:
    >>> from dynamite.model import Embedding, RNNStep, Linear, Sequential, Fold
    >>> model = Sequential([Embedding(50), Fold(RNNStep(25)), Linear(5)])
    >>> model.nested("[1]").nested("step")["W"]

Subpackages:
    - dynamite.model      — ParameterBlock, model shapes, Batch, layers,
                            sequence combinators, attention, networks
    - dynamite.data       — Minibatch source and minibatch adaptation
    - dynamite.training   — Reference trainer and training driver
    - dynamite.evaluation — Timing and memory metrics
"""

__version__ = "0.1.0"
__author__ = "Dynamite contributors"
