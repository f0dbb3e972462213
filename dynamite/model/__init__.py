"""
dynamite.model — Dynamic Model Composition
==========================================
Everything needed to build models as compositions of named,
parameterized tensor functions.

Layering (leaves first):

    parameters.py   ParameterBlock, parameter construction, persistence
    base.py         UnaryModel / BinaryModel / UnarySequenceModel /
                    BinarySequenceModel, UnaryBroadcastingModel, Batch
    ops.py          index, to_vector, splice, softmax, cross entropy
    layers.py       Embedding, RNNStep, Linear, Sequential
    sequence.py     Recurrence, Fold, BiRecurrence, Sequence
    attention.py    AttentionModel
    networks.py     Sequence classifier (static and unrolled), criteria,
                    sequence-to-sequence with attention
"""

from dynamite.model.parameters import (
    ParameterBlock,
    constant_parameter,
    glorot_parameter,
    load_parameters,
    save_parameters,
    vector_parameter,
)
from dynamite.model.base import (
    Batch,
    BinaryModel,
    BinarySequenceModel,
    Model,
    UnaryBroadcastingModel,
    UnaryModel,
    UnarySequenceModel,
)
from dynamite.model.layers import Embedding, Linear, RNNStep, Sequential
from dynamite.model.sequence import BiRecurrence, Fold, Recurrence, Sequence
from dynamite.model.attention import AttentionModel
from dynamite.model.networks import (
    Seq2SeqAttention,
    UnrolledClassifier,
    create_criterion_function,
    create_criterion_function_unrolled,
    create_model_function,
    create_model_function_s2s_att,
    create_model_function_unrolled,
)
