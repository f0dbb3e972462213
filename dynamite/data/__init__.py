"""
dynamite.data — Minibatch Source and Adaptation
===============================================

    source.py    Stream declarations, packed MinibatchData, the
                 SequenceMinibatchSource, example files and a synthetic
                 task generator
    adapter.py   Packed minibatch -> per-sequence tensors -> step slices

Information Flow:
    examples (JSON lines)
        -> SequenceMinibatchSource.next_minibatch   packed (B, T, dim)
        -> from_packed_minibatch                    per-sequence (dim, len)
        -> explode_sequences / to_vector            per-step (dim,)
"""

from dynamite.data.source import (
    FULL_DATA_SWEEP,
    InputVariable,
    MinibatchData,
    SequenceMinibatchSource,
    StreamConfiguration,
    StreamInfo,
    generate_synthetic_examples,
    load_examples,
    save_examples,
)
from dynamite.data.adapter import explode_sequences, from_packed_minibatch
