"""
Dynamite Networks
=================
Complete models and criterion functions for the sequence-classification
experiment, assembled from the layers and combinators.

Two formulations of the same classifier:

    Static (whole sequence):
        Sequential([Embedding, Fold(RNNStep), Linear])
        The embedding is applied to the packed (input_dim, seq_len)
        matrix in one product; Fold splits the result into steps.
        Parameters: "[0].E", "[1].step.{W,R,b}", "[2].{W,b}"

    Unrolled (dynamic, per step):
        state = 0
        for t in range(seq_len):
            state = step(state, embed(x[:, t]))
        return linear(state)
        Parameters: "embed.E", "step.{W,R,b}", "linear.{W,b}"

Given the same parameter values both produce the same logits, which is
what the training driver uses to cross-check them.

A sequence-to-sequence model with attention is also provided: an RNN
encoder over the embedded input and an attention decoder trained with
teacher forcing.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

import torch

from dynamite.model.attention import AttentionModel
from dynamite.model.base import (
    Batch,
    BinaryModel,
    BinarySequenceModel,
    UnaryModel,
)
from dynamite.model.layers import Embedding, Linear, RNNStep, Sequential
from dynamite.model.ops import collate_losses, cross_entropy_with_softmax, index
from dynamite.model.sequence import BiRecurrence, Fold, Recurrence

logger = logging.getLogger(__name__)


# =============================================================================
# Sequence classifier
# =============================================================================

def create_model_function(
    num_output_classes: int,
    embedding_dim: int,
    hidden_dim: int,
    input_dim: Optional[int] = None,
    device: Optional[torch.device] = None,
) -> Sequential:
    """
    Whole-sequence classifier: packed sequence (input_dim, seq_len) ->
    logits (num_output_classes,).
    """
    return Sequential([
        Embedding(embedding_dim, input_dim, device=device),
        Fold(RNNStep(hidden_dim, embedding_dim, device=device)),
        Linear(num_output_classes, hidden_dim, device=device),
    ])


def create_criterion_function(model: UnaryModel) -> BinaryModel:
    """(features, labels) -> cross-entropy loss of `model` for one example."""
    def criterion(features: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
        z = model(features)
        return cross_entropy_with_softmax(z, labels)

    return BinaryModel(criterion, nested={"model": model})


class UnrolledClassifier(UnaryModel):
    """
    Per-step formulation of the sequence classifier.

    The input is a packed (input_dim, seq_len) sequence; each step is
    sliced off, embedded, and fed through the RNN step starting from a
    zero state. The final state is projected to class logits.

    Sub-model blocks are captured under "embed", "step" and "linear".
    """

    def __init__(
        self,
        num_output_classes: int,
        embedding_dim: int,
        hidden_dim: int,
        input_dim: Optional[int] = None,
        device: Optional[torch.device] = None,
    ):
        self.embed = Embedding(embedding_dim, input_dim, device=device)
        self.step = RNNStep(hidden_dim, embedding_dim, device=device)
        self.linear = Linear(num_output_classes, hidden_dim, device=device)
        self.zero = torch.zeros(hidden_dim, device=device)
        super().__init__(nested={
            "embed": self.embed,
            "step": self.step,
            "linear": self.linear,
        })

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        seq_len = x.shape[-1]
        state = self.zero
        for t in range(seq_len):
            xt = self.embed(index(x, t))
            state = self.step(state, xt)
        return self.linear(state)


def create_model_function_unrolled(
    num_output_classes: int,
    embedding_dim: int,
    hidden_dim: int,
    input_dim: Optional[int] = None,
    device: Optional[torch.device] = None,
) -> UnrolledClassifier:
    return UnrolledClassifier(
        num_output_classes, embedding_dim, hidden_dim, input_dim, device=device
    )


def create_criterion_function_unrolled(
    model: UnaryModel,
) -> Callable[[Sequence[torch.Tensor], Sequence[torch.Tensor]], torch.Tensor]:
    """
    Minibatch criterion for the unrolled model.

    Returns a function (features, labels) -> scalar, where both are
    lists with one entry per sequence. Each example's loss is computed
    separately (a dynamic graph per example) and the losses are then
    collated and summed over the minibatch.
    """
    criterion = create_criterion_function(model)
    batch_criterion = Batch.mapper(criterion)

    def minibatch_criterion(
        features: Sequence[torch.Tensor],
        labels: Sequence[torch.Tensor],
    ) -> torch.Tensor:
        losses = batch_criterion(features, labels)
        return collate_losses(losses)

    return minibatch_criterion


# =============================================================================
# Sequence-to-sequence with attention
# =============================================================================

class Seq2SeqAttention(BinarySequenceModel):
    """
    Attention encoder-decoder returning one loss per output position.

    Called as model(input_steps, label_steps): both are lists of one-hot
    step vectors. The decoder is trained with teacher forcing: the true
    previous label is fed back, with a zero vector standing in for the
    beginning-of-sequence symbol at the first step.

    At each output position t:
        context = attention(encoded, state)
        state   = decoder(state, [out_embed(prev) ; context])
        z       = out_proj(state)
        loss_t  = logsumexp(z) - label[t] · z

    Parameters
    ----------
    num_output_classes : int
        Width of the label vectors (output vocabulary).
    embedding_dim : int
        Width of input and output embeddings.
    hidden_dim : int
        Encoder and decoder state width.
    attention_dim : int
        Width of the attention space.
    input_dim : int or None
        Width of the input vectors. Inferred when None.
    bidirectional : bool
        Use a BiRecurrence encoder (state width 2 × hidden_dim) instead
        of a forward Recurrence.
    device : torch.device or None
        Device for parameters and constants.
    """

    def __init__(
        self,
        num_output_classes: int,
        embedding_dim: int,
        hidden_dim: int,
        attention_dim: int,
        input_dim: Optional[int] = None,
        bidirectional: bool = False,
        device: Optional[torch.device] = None,
    ):
        self.zero = torch.zeros(hidden_dim, device=device)
        # one-hot of the BOS symbol; zero until the label vocabulary has one
        self.bos = torch.zeros(num_output_classes, device=device)

        self.embed = Embedding(embedding_dim, input_dim, device=device)
        fwd_enc = RNNStep(hidden_dim, embedding_dim, device=device)
        if bidirectional:
            bwd_enc = RNNStep(hidden_dim, embedding_dim, device=device)
            self.encoder = BiRecurrence(fwd_enc, bwd_enc, self.zero)
            encoder_dim = 2 * hidden_dim
        else:
            self.encoder = Recurrence(fwd_enc, self.zero)
            encoder_dim = hidden_dim

        self.out_embed = Embedding(embedding_dim, num_output_classes, device=device)
        self.decoder = RNNStep(hidden_dim, embedding_dim + encoder_dim, device=device)
        self.attention = AttentionModel(
            attention_dim, encoder_dim, hidden_dim, device=device
        )
        self.out_proj = Linear(num_output_classes, hidden_dim, device=device)

        super().__init__(nested={
            "embed": self.embed,
            "encoder": self.encoder,
            "out_embed": self.out_embed,
            "decoder": self.decoder,
            "attention": self.attention,
            "out_proj": self.out_proj,
        })

    def decode_step(
        self,
        encoded: Sequence[torch.Tensor],
        state: torch.Tensor,
        prev_word: torch.Tensor,
    ) -> torch.Tensor:
        """One decoder step: new recurrent state from context and previous word."""
        context = self.attention(encoded, state)
        prev_word_embedded = self.out_embed(prev_word)
        decoder_input = torch.cat([prev_word_embedded, context], dim=0)
        return self.decoder(state, decoder_input)

    def apply(
        self,
        inputs: Sequence[torch.Tensor],
        labels: Sequence[torch.Tensor],
    ) -> list[torch.Tensor]:
        encoded = self.encoder(self.embed(list(inputs)))

        losses = []
        state = self.zero
        for t in range(len(labels)):
            prev_out = self.bos if t == 0 else labels[t - 1]
            state = self.decode_step(encoded, state, prev_out)
            z = self.out_proj(state)
            losses.append(cross_entropy_with_softmax(z, labels[t]))
        return losses


def create_model_function_s2s_att(
    num_output_classes: int,
    embedding_dim: int,
    hidden_dim: int,
    attention_dim: int,
    input_dim: Optional[int] = None,
    bidirectional: bool = False,
    device: Optional[torch.device] = None,
) -> Seq2SeqAttention:
    return Seq2SeqAttention(
        num_output_classes,
        embedding_dim,
        hidden_dim,
        attention_dim,
        input_dim=input_dim,
        bidirectional=bidirectional,
        device=device,
    )
