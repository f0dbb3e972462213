"""
Dynamite Attention
==================
Additive attention of one decoder state over a sequence of encoder
states.

    H     = [h_enc_0 ... h_enc_{L-1}]           (enc_dim, L)
    u     = tanh(W_enc @ H + W_dec @ h_dec)     (attention_dim, L)
    score = v @ u                               (L,)
    w     = softmax(score)                      (L,)   sums to 1
    ctx   = H @ w                               (enc_dim,)

The softmax subtracts the log-sum-exp before exponentiating, so large
scores do not overflow. With a single encoder state the weight is
exactly 1 and the context is that state.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import torch

from dynamite.model.base import Model
from dynamite.model.ops import softmax, splice
from dynamite.model.parameters import (
    glorot_parameter,
    materialize_input_dim,
    vector_parameter,
)

logger = logging.getLogger(__name__)


class AttentionModel(Model):
    """
    Learned additive attention, called as attention(h_encs, h_dec).

    Parameters
    ----------
    attention_dim : int
        Width of the shared space both states are projected into.
    encoder_dim : int or None
        Width of the encoder states. Inferred when None.
    decoder_dim : int or None
        Width of the decoder state. Inferred when None.
    device : torch.device or None
        Device for the parameters.
    """

    def __init__(
        self,
        attention_dim: int,
        encoder_dim: Optional[int] = None,
        decoder_dim: Optional[int] = None,
        device: Optional[torch.device] = None,
    ):
        self.attention_dim = attention_dim
        super().__init__(parameters={
            "W_enc": glorot_parameter(attention_dim, encoder_dim, device=device),
            "W_dec": glorot_parameter(attention_dim, decoder_dim, device=device),
            "v": vector_parameter(attention_dim, device=device),
        })

    def __call__(self, h_encs: Sequence[torch.Tensor], h_dec: torch.Tensor) -> torch.Tensor:
        return self.apply(h_encs, h_dec)

    def weights(self, h_encs: Sequence[torch.Tensor], h_dec: torch.Tensor) -> torch.Tensor:
        """Attention distribution over the encoder positions, shape (L,)."""
        return self._attend(h_encs, h_dec)[1]

    def apply(self, h_encs: Sequence[torch.Tensor], h_dec: torch.Tensor) -> torch.Tensor:
        h_encs_tensor, w = self._attend(h_encs, h_dec)
        return h_encs_tensor @ w

    def _attend(self, h_encs, h_dec):
        if len(h_encs) == 0:
            raise ValueError("attention needs at least one encoder state")

        W_enc, W_dec, v = self["W_enc"], self["W_dec"], self["v"]
        h_encs_tensor = splice(h_encs, axis=1)  # (enc_dim, L)
        materialize_input_dim(W_enc, self.attention_dim, h_encs_tensor.shape[0])
        materialize_input_dim(W_dec, self.attention_dim, h_dec.shape[0])

        # TODO: the encoder projection only depends on h_encs; cache it per
        # sequence instead of recomputing it at every decoder step
        h_encs_proj = W_enc @ h_encs_tensor            # (attention_dim, L)
        h_dec_proj = W_dec @ h_dec                     # (attention_dim,)
        u = torch.tanh(h_encs_proj + h_dec_proj.unsqueeze(-1))
        scores = v @ u                                 # (L,)
        return h_encs_tensor, softmax(scores)
