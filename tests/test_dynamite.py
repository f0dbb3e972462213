#!/usr/bin/env python3
"""
Tests for Dynamite configuration, parameter blocks, model shapes,
batching, layers, sequence combinators, attention and networks.

Run all tests:
    python -m pytest tests/ -v --tb=short

Run a specific test file:
    python -m pytest tests/test_dynamite.py -v
"""

import sys
from pathlib import Path

import pytest
import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def _counting(fn, calls, key):
    def wrapper(*args):
        calls[key] = calls.get(key, 0) + 1
        return fn(*args)
    return wrapper


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:
    """Tests for the configuration system."""

    def test_default_config_loads(self):
        """Default config should load and validate without errors."""
        from dynamite.config import DynamiteConfig
        config = DynamiteConfig()
        config.validate()
        assert config.model.embedding_dim == 50
        assert config.model.hidden_dim == 25
        assert config.model.num_output_classes == 5

    def test_smoke_test_config(self):
        """Smoke test config should create valid minimal configuration."""
        from dynamite.config import DynamiteConfig
        config = DynamiteConfig.for_smoke_test()
        config.validate()
        assert config.model.input_dim == 40
        assert config.training.device == "cpu"

    def test_invalid_width(self):
        from dynamite.config import ModelConfig
        with pytest.raises(ValueError, match="hidden_dim"):
            ModelConfig(hidden_dim=0).validate()

    def test_single_class_rejected(self):
        from dynamite.config import ModelConfig
        with pytest.raises(ValueError, match="num_output_classes"):
            ModelConfig(num_output_classes=1).validate()

    def test_unknown_device(self):
        from dynamite.config import TrainingConfig
        with pytest.raises(ValueError, match="Unknown device"):
            TrainingConfig(device="tpu").validate()

    def test_stream_names_must_differ(self):
        from dynamite.config import DataConfig
        with pytest.raises(ValueError, match="must differ"):
            DataConfig(features_name="x", labels_name="x").validate()

    def test_yaml_round_trip(self, tmp_path):
        """Config should save to YAML and load back identically."""
        from dynamite.config import DynamiteConfig
        config = DynamiteConfig.for_smoke_test()

        yaml_path = tmp_path / "test_config.yaml"
        config.to_yaml(yaml_path)

        loaded = DynamiteConfig.from_yaml(yaml_path)
        assert loaded.model == config.model
        assert loaded.training == config.training
        assert loaded.data == config.data

    def test_missing_yaml(self, tmp_path):
        from dynamite.config import DynamiteConfig
        with pytest.raises(FileNotFoundError):
            DynamiteConfig.from_yaml(tmp_path / "nope.yaml")

    def test_classifier_params(self):
        from dynamite.config import ModelConfig
        config = ModelConfig(input_dim=10, embedding_dim=4, hidden_dim=3,
                             num_output_classes=2)
        # E: 4*10, step: 3*4 + 3*3 + 3, linear: 2*3 + 2
        assert config.classifier_params == 40 + 24 + 8


# =============================================================================
# ParameterBlock Tests
# =============================================================================

class TestParameterBlock:
    """Tests for parameter construction and ParameterBlock lookup."""

    def test_glorot_shape(self):
        from dynamite.model.parameters import glorot_parameter
        W = glorot_parameter(25, 50)
        assert W.shape == (25, 50)
        assert W.requires_grad

    def test_glorot_inferred_materializes(self):
        from torch.nn.parameter import UninitializedParameter
        from dynamite.model.parameters import glorot_parameter, materialize_input_dim
        W = glorot_parameter(4)
        assert isinstance(W, UninitializedParameter)
        materialize_input_dim(W, 4, 7)
        assert not isinstance(W, UninitializedParameter)
        assert W.shape == (4, 7)

    def test_constant_parameter(self):
        from dynamite.model.parameters import constant_parameter
        b = constant_parameter(3, 0.5)
        assert torch.equal(b.detach(), torch.full((3,), 0.5))

    def test_lookup(self):
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        b = constant_parameter(3)
        block = ParameterBlock({"b": b})
        assert block.lookup("b") is b
        assert block["b"] is b

    def test_from_pairs_keeps_order(self):
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        block = ParameterBlock([("z", constant_parameter(1)), ("a", constant_parameter(1))])
        assert [name for name, _ in block.named_parameters()] == ["z", "a"]

    def test_missing_parameter_fails(self):
        """Lookup of an absent name fails instead of returning a default."""
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        block = ParameterBlock({"W": constant_parameter(2)})
        with pytest.raises(KeyError, match="no such parameter"):
            block.lookup("R")

    def test_empty_name_lookup_fails(self):
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        block = ParameterBlock({"W": constant_parameter(2)})
        with pytest.raises(KeyError):
            block.lookup("")
        with pytest.raises(KeyError):
            block.find("")

    def test_unnamed_parameter_rejected(self):
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        with pytest.raises(ValueError, match="must be named"):
            ParameterBlock([("", constant_parameter(1))])

    def test_duplicate_name_rejected(self):
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        with pytest.raises(ValueError, match="duplicate"):
            ParameterBlock([("W", constant_parameter(1)), ("W", constant_parameter(1))])

    def test_missing_nested_fails(self):
        from dynamite.model.parameters import ParameterBlock
        with pytest.raises(KeyError, match="no such nested model"):
            ParameterBlock().nested("step")

    def test_read_only(self):
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        block = ParameterBlock({"W": constant_parameter(1)})
        with pytest.raises(TypeError):
            block.own_parameters["R"] = constant_parameter(1)

    def test_shared_block_reported_once(self):
        """A block captured by two parents is traversed once."""
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        shared = ParameterBlock({"W": constant_parameter(2)})
        root = ParameterBlock(
            {"b": constant_parameter(1)},
            {"left": shared, "right": shared},
        )
        paths = [name for name, _ in root.named_parameters()]
        assert paths == ["b", "left.W"]
        assert root.nested("left") is root.nested("right")
        assert len(root.parameters()) == 2

    def test_find_path(self):
        from dynamite.model.layers import Embedding, Linear, RNNStep, Sequential
        from dynamite.model.sequence import Fold
        model = Sequential([Embedding(5, 10), Fold(RNNStep(3, 5)), Linear(2, 3)])
        block = model.parameter_block
        assert block.find("[0].E").shape == (5, 10)
        assert block.find("[1].step.W").shape == (3, 5)
        assert block.find("[1].step.R").shape == (3, 3)
        assert block.find("[2].b").shape == (2,)
        with pytest.raises(KeyError):
            block.find("[3].W")

    def test_state_dict_round_trip(self):
        from dynamite.model.layers import RNNStep
        a, b = RNNStep(3, 4), RNNStep(3, 4)
        b.parameter_block.load_state_dict(a.parameter_block.state_dict())
        for (name_a, pa), (name_b, pb) in zip(a.named_parameters(), b.named_parameters()):
            assert name_a == name_b
            assert torch.equal(pa, pb)

    def test_load_state_dict_missing_key(self):
        from dynamite.model.layers import RNNStep
        step = RNNStep(3, 4)
        state = step.parameter_block.state_dict()
        del state["R"]
        with pytest.raises(KeyError, match="R"):
            step.parameter_block.load_state_dict(state)

    def test_load_state_dict_shape_mismatch(self):
        from dynamite.model.layers import RNNStep
        step = RNNStep(3, 4)
        state = RNNStep(3, 5).parameter_block.state_dict()
        with pytest.raises(ValueError, match="shape mismatch"):
            step.parameter_block.load_state_dict(state)

    def test_save_and_load(self, tmp_path):
        from dynamite.model.networks import create_model_function
        from dynamite.model.parameters import load_parameters, save_parameters
        a = create_model_function(3, 4, 5, input_dim=10)
        b = create_model_function(3, 4, 5, input_dim=10)
        path = tmp_path / "params.safetensors"
        save_parameters(a.parameter_block, path)
        load_parameters(b.parameter_block, path)
        for pa, pb in zip(a.parameters(), b.parameters()):
            assert torch.equal(pa, pb)

    def test_save_uninitialized_rejected(self, tmp_path):
        from dynamite.model.layers import Embedding
        from dynamite.model.parameters import save_parameters
        with pytest.raises(ValueError, match="uninitialized"):
            save_parameters(Embedding(4).parameter_block, tmp_path / "e.safetensors")

    def test_load_missing_file(self, tmp_path):
        from dynamite.model.layers import RNNStep
        from dynamite.model.parameters import load_parameters
        with pytest.raises(FileNotFoundError):
            load_parameters(RNNStep(2, 2).parameter_block, tmp_path / "missing.safetensors")


# =============================================================================
# Model and Batch Tests
# =============================================================================

class TestModels:
    """Tests for the four model shapes and the broadcasting wrapper."""

    def test_unary_from_function(self):
        from dynamite.model.base import UnaryModel
        double = UnaryModel(lambda x: 2 * x)
        assert torch.equal(double(torch.ones(2)), torch.full((2,), 2.0))
        assert double.parameters() == []

    def test_model_owns_block(self):
        from dynamite.model.base import BinaryModel
        from dynamite.model.parameters import constant_parameter
        w = constant_parameter(2, 3.0)
        scale = BinaryModel(lambda a, b: w * (a + b), {"w": w})
        assert scale["w"] is w
        out = scale(torch.ones(2), torch.zeros(2))
        assert torch.equal(out, torch.full((2,), 3.0))

    def test_nested_capture(self):
        from dynamite.model.base import UnaryModel
        from dynamite.model.layers import Linear
        inner = Linear(2, 3)
        outer = UnaryModel(lambda x: inner(x), nested={"inner": inner})
        assert outer.nested("inner") is inner.parameter_block
        assert [n for n, _ in outer.named_parameters()] == ["inner.W", "inner.b"]

    def test_shared_block_conflicts(self):
        from dynamite.model.base import UnaryModel
        from dynamite.model.parameters import ParameterBlock, constant_parameter
        with pytest.raises(ValueError, match="cannot declare"):
            UnaryModel(lambda x: x, {"w": constant_parameter(1)}, block=ParameterBlock())

    def test_parameter_block_accessor(self):
        from dynamite.model.layers import Linear
        linear = Linear(2, 3)
        assert linear.parameter_block.lookup("W") is linear["W"]
        assert not hasattr(linear, "get_parameter_block")

    def test_apply_without_function(self):
        from dynamite.model.base import UnaryModel
        with pytest.raises(NotImplementedError):
            UnaryModel()(torch.ones(1))

    def test_sequence_models(self):
        from dynamite.model.base import BinarySequenceModel, UnarySequenceModel
        rev = UnarySequenceModel(lambda seq: list(reversed(seq)))
        a, b = torch.tensor([1.0]), torch.tensor([2.0])
        assert rev([a, b]) == [b, a]
        add = BinarySequenceModel(lambda xs, ys: [x + y for x, y in zip(xs, ys)])
        out = add([a, b], [b, a])
        assert torch.equal(out[0], torch.tensor([3.0]))
        assert torch.equal(out[1], torch.tensor([3.0]))

    def test_broadcasting_single_and_list(self):
        from dynamite.model.layers import Linear
        linear = Linear(2, 3)
        x = torch.randn(3)
        single = linear(x)
        many = linear([x, x])
        assert single.shape == (2,)
        assert len(many) == 2
        assert torch.allclose(many[0], single)

    def test_broadcasting_nested_lists(self):
        from dynamite.model.layers import Embedding
        embed = Embedding(2, 4)
        batch = [[torch.randn(4)] * 3, [torch.randn(4)]]
        out = embed(batch)
        assert [len(seq) for seq in out] == [3, 1]
        assert out[0][0].shape == (2,)

    def test_wrap_shares_block(self):
        from dynamite.model.base import UnaryBroadcastingModel
        from dynamite.model.layers import Linear
        linear = Linear(2, 3)
        wrapped = UnaryBroadcastingModel.wrap(linear)
        assert wrapped.parameter_block is linear.parameter_block
        x = torch.randn(3)
        assert torch.allclose(wrapped([x])[0], linear(x))


class TestBatch:
    """Tests for Batch.map, Batch.mapper and Batch.sum."""

    def test_map_preserves_order(self):
        from dynamite.model.base import Batch, UnaryModel
        double = UnaryModel(lambda x: 2 * x)
        items = [torch.tensor([float(i)]) for i in range(4)]
        out = Batch.map(double, items)
        assert [o.item() for o in out] == [0.0, 2.0, 4.0, 6.0]

    def test_pairwise_mapper(self):
        """Element i of the result is f(A[i], B[i])."""
        from dynamite.model.base import Batch, BinaryModel
        f = BinaryModel(lambda a, b: a * 10 + b)
        A = [torch.tensor([1.0]), torch.tensor([2.0]), torch.tensor([3.0])]
        B = [torch.tensor([4.0]), torch.tensor([5.0]), torch.tensor([6.0])]
        out = Batch.mapper(f)(A, B)
        assert len(out) == 3
        for i in range(3):
            assert torch.equal(out[i], f(A[i], B[i]))

    def test_pairwise_mapper_mismatched_length(self):
        from dynamite.model.base import Batch, BinaryModel
        f = BinaryModel(lambda a, b: a + b)
        with pytest.raises(ValueError, match="batch size mismatch"):
            Batch.mapper(f)([torch.ones(1)] * 3, [torch.ones(1)] * 2)

    def test_binary_sequence_mapper_mismatched_length(self):
        from dynamite.model.base import Batch, BinarySequenceModel
        f = BinarySequenceModel(lambda xs, ys: xs)
        with pytest.raises(ValueError, match="batch size mismatch"):
            Batch.mapper(f)([[torch.ones(1)]], [])

    def test_unary_mapper(self):
        from dynamite.model.base import Batch, UnaryModel
        neg = Batch.mapper(UnaryModel(lambda x: -x))
        out = neg([torch.ones(2)])
        assert torch.equal(out[0], -torch.ones(2))

    def test_sum_of_zeros(self):
        from dynamite.model.base import Batch
        out = Batch.sum([torch.zeros(2, 3) for _ in range(4)])
        assert torch.equal(out, torch.zeros(2, 3))

    def test_sum_singleton(self):
        from dynamite.model.base import Batch
        x = torch.randn(5)
        assert torch.equal(Batch.sum([x]), x)

    def test_sum_values(self):
        from dynamite.model.base import Batch
        items = [torch.tensor([1.0, 2.0]), torch.tensor([3.0, 4.0])]
        assert torch.equal(Batch.sum(items), torch.tensor([4.0, 6.0]))

    def test_sum_scalars_and_nested(self):
        from dynamite.model.base import Batch
        out = Batch.sum([[torch.tensor(1.0), torch.tensor(2.0)], [torch.tensor(3.0)]])
        assert out.shape == ()
        assert out.item() == 6.0

    def test_sum_empty(self):
        from dynamite.model.base import Batch
        with pytest.raises(ValueError, match="empty"):
            Batch.sum([])


# =============================================================================
# Ops Tests
# =============================================================================

class TestOps:
    """Tests for tensor helpers."""

    def test_index_trailing_axis(self):
        from dynamite.model.ops import index
        x = torch.arange(6.0).reshape(2, 3)
        assert torch.equal(index(x, 1), torch.tensor([1.0, 4.0]))

    def test_index_out_of_range(self):
        from dynamite.model.ops import index
        with pytest.raises(IndexError):
            index(torch.zeros(2, 3), 3)

    def test_splice_new_axis(self):
        from dynamite.model.ops import splice
        out = splice([torch.zeros(4), torch.ones(4)], axis=1)
        assert out.shape == (4, 2)
        assert torch.equal(out[:, 1], torch.ones(4))

    def test_splice_existing_axis(self):
        from dynamite.model.ops import splice
        assert splice([torch.zeros(2), torch.ones(3)], axis=0).shape == (5,)

    def test_cross_entropy(self):
        from dynamite.model.ops import cross_entropy_with_softmax
        z = torch.tensor([1.0, 2.0, 3.0])
        label = torch.tensor([0.0, 0.0, 1.0])
        expected = torch.nn.functional.cross_entropy(z.unsqueeze(0), torch.tensor([2]))
        assert torch.allclose(cross_entropy_with_softmax(z, label), expected)

    def test_softmax_stable(self):
        from dynamite.model.ops import softmax
        w = softmax(torch.tensor([1000.0, 1000.0]))
        assert torch.isfinite(w).all()
        assert torch.allclose(w, torch.tensor([0.5, 0.5]), atol=1e-4)

    def test_collate_losses(self):
        from dynamite.model.ops import collate_losses
        total = collate_losses([torch.tensor(1.0), torch.tensor([2.0, 3.0])])
        assert total.item() == 6.0
        with pytest.raises(ValueError):
            collate_losses([])


# =============================================================================
# Layer and Sequence Tests
# =============================================================================

class TestLayers:
    """Tests for Embedding, RNNStep, Linear and Sequential."""

    def test_embedding_selects_column(self):
        from dynamite.model.layers import Embedding
        embed = Embedding(3, 5)
        x = torch.zeros(5)
        x[2] = 1.0
        assert torch.allclose(embed(x), embed["E"][:, 2])

    def test_embedding_infers_input_dim(self):
        from dynamite.model.layers import Embedding
        embed = Embedding(3)
        out = embed(torch.zeros(7))
        assert out.shape == (3,)
        assert embed["E"].shape == (3, 7)

    def test_rnn_step(self):
        from dynamite.model.layers import RNNStep
        step = RNNStep(4, 3)
        h, x = torch.randn(4), torch.randn(3)
        expected = torch.relu(step["W"] @ x + step["R"] @ h + step["b"])
        assert torch.allclose(step(h, x), expected)

    def test_rnn_step_nonnegative(self):
        from dynamite.model.layers import RNNStep
        out = RNNStep(8, 3)(torch.randn(8), torch.randn(3))
        assert (out >= 0).all()

    def test_sequential_paths(self):
        from dynamite.model.layers import Linear, Sequential
        seq = Sequential([Linear(4, 3), Linear(2, 4)])
        assert len(seq) == 2
        assert [n for n, _ in seq.named_parameters()] == ["[0].W", "[0].b", "[1].W", "[1].b"]
        assert seq(torch.randn(3)).shape == (2,)


class TestSequence:
    """Tests for Recurrence, Fold and BiRecurrence."""

    @staticmethod
    def _step():
        from dynamite.model.base import BinaryModel
        # state' = 2 * state + x, easy to check by hand
        return BinaryModel(lambda h, x: 2 * h + x)

    def test_recurrence_forward(self):
        from dynamite.model.sequence import Recurrence
        seq = [torch.tensor([1.0]), torch.tensor([2.0]), torch.tensor([3.0])]
        out = Recurrence(self._step(), torch.tensor([0.0]))(seq)
        assert [o.item() for o in out] == [1.0, 4.0, 11.0]

    def test_recurrence_backward(self):
        """Backward recursion stores each result at its own position."""
        from dynamite.model.sequence import Recurrence
        seq = [torch.tensor([1.0]), torch.tensor([2.0]), torch.tensor([3.0])]
        out = Recurrence(self._step(), torch.tensor([0.0]), go_backwards=True)(seq)
        # out[2] = 3, out[1] = 2*3 + 2, out[0] = 2*8 + 1
        assert len(out) == 3
        assert [o.item() for o in out] == [17.0, 8.0, 3.0]

    def test_recurrence_matches_definition(self):
        from dynamite.model.layers import RNNStep
        from dynamite.model.sequence import Recurrence
        step = RNNStep(4, 3)
        h0 = torch.zeros(4)
        seq = [torch.randn(3) for _ in range(5)]
        out = Recurrence(step, h0)(seq)
        state = h0
        for t in range(5):
            state = step(state, seq[t])
            assert torch.allclose(out[t], state)

    def test_recurrence_empty(self):
        from dynamite.model.sequence import Recurrence
        assert Recurrence(self._step(), torch.tensor([0.0]))([]) == []

    def test_recurrence_default_state(self):
        from dynamite.model.layers import RNNStep
        from dynamite.model.sequence import Recurrence
        step = RNNStep(4, 3)
        x = torch.randn(3)
        out = Recurrence(step)([x])
        assert torch.allclose(out[0], step(torch.zeros(4), x))

    def test_recurrence_needs_state_width(self):
        from dynamite.model.sequence import Recurrence
        with pytest.raises(ValueError, match="output_dim"):
            Recurrence(self._step())([torch.tensor([1.0])])

    def test_fold_equals_last(self):
        from dynamite.model.layers import RNNStep
        from dynamite.model.sequence import Fold, Recurrence
        step = RNNStep(4, 3)
        seq = [torch.randn(3) for _ in range(6)]
        h0 = torch.zeros(4)
        assert torch.equal(Fold(step, h0)(seq), Recurrence(step, h0)(seq)[-1])

    def test_fold_packed_tensor(self):
        from dynamite.model.layers import RNNStep
        from dynamite.model.sequence import Fold
        step = RNNStep(4, 3)
        packed = torch.randn(3, 5)
        steps = [packed[:, t] for t in range(5)]
        assert torch.allclose(Fold(step)(packed), Fold(step)(steps))

    def test_fold_empty(self):
        from dynamite.model.layers import RNNStep
        from dynamite.model.sequence import Fold
        with pytest.raises(ValueError, match="empty"):
            Fold(RNNStep(2, 2))([])

    def test_fold_captures_step(self):
        from dynamite.model.layers import RNNStep
        from dynamite.model.sequence import Fold
        step = RNNStep(2, 2)
        assert Fold(step).nested("step") is step.parameter_block

    def test_birecurrence(self):
        from dynamite.model.layers import RNNStep
        from dynamite.model.sequence import BiRecurrence, Recurrence
        fwd, bwd = RNNStep(4, 3), RNNStep(4, 3)
        h0 = torch.zeros(4)
        seq = [torch.randn(3) for _ in range(3)]
        out = BiRecurrence(fwd, bwd, h0)(seq)
        f = Recurrence(fwd, h0)(seq)
        b = Recurrence(bwd, h0, go_backwards=True)(seq)
        assert len(out) == 3
        for t in range(3):
            assert out[t].shape == (8,)
            assert torch.equal(out[t], torch.cat([f[t], b[t]]))

    def test_sequence_embedding(self):
        from dynamite.model.sequence import Sequence
        embed = Sequence.embedding(3, 5)
        out = embed([torch.zeros(5), torch.ones(5)])
        assert len(out) == 2 and out[1].shape == (3,)


# =============================================================================
# Attention Tests
# =============================================================================

class TestAttention:
    """Tests for additive attention."""

    def test_single_position_weight_is_one(self):
        """One encoder state gets weight 1 and is returned as the context."""
        from dynamite.model.attention import AttentionModel
        attention = AttentionModel(4, encoder_dim=6, decoder_dim=5)
        h_enc = torch.randn(6)
        h_dec = torch.randn(5)
        w = attention.weights([h_enc], h_dec)
        assert w.shape == (1,)
        assert w.item() == 1.0
        assert torch.equal(attention([h_enc], h_dec), h_enc)

    def test_weights_form_distribution(self):
        from dynamite.model.attention import AttentionModel
        attention = AttentionModel(4, encoder_dim=6, decoder_dim=5)
        h_encs = [torch.randn(6) for _ in range(7)]
        w = attention.weights(h_encs, torch.randn(5))
        assert w.shape == (7,)
        assert torch.allclose(w.sum(), torch.tensor(1.0))
        assert (w >= 0).all()

    def test_context_shape(self):
        from dynamite.model.attention import AttentionModel
        attention = AttentionModel(4)
        ctx = attention([torch.randn(6) for _ in range(3)], torch.randn(5))
        assert ctx.shape == (6,)
        assert attention["W_enc"].shape == (4, 6)
        assert attention["W_dec"].shape == (4, 5)

    def test_empty_encoder(self):
        from dynamite.model.attention import AttentionModel
        with pytest.raises(ValueError, match="at least one"):
            AttentionModel(4, 6, 5)([], torch.randn(5))


# =============================================================================
# Network Tests
# =============================================================================

class TestNetworks:
    """Tests for the classifier formulations and seq2seq model."""

    @staticmethod
    def _one_hot(ids, dim):
        x = torch.zeros(dim, len(ids))
        for t, i in enumerate(ids):
            x[i, t] = 1.0
        return x

    def test_static_logits_shape(self):
        from dynamite.model.networks import create_model_function
        model = create_model_function(5, 50, 25, input_dim=100)
        z = model(self._one_hot([3, 7, 9], 100))
        assert z.shape == (5,)

    def test_unrolled_single_step(self):
        """A 1-step sequence is one embed, one step from zero, one linear."""
        from dynamite.model.networks import create_model_function_unrolled
        model = create_model_function_unrolled(5, 50, 25, input_dim=100)
        calls = {}
        for name in ("embed", "step", "linear"):
            sub = getattr(model, name)
            sub.apply = _counting(sub.apply, calls, name)

        x = self._one_hot([4], 100)
        z = model(x)

        assert calls == {"embed": 1, "step": 1, "linear": 1}
        x0 = x[:, 0]
        expected = model.linear(model.step(torch.zeros(25), model.embed(x0)))
        assert torch.allclose(z, expected)

    def test_unrolled_paths(self):
        from dynamite.model.networks import create_model_function_unrolled
        model = create_model_function_unrolled(5, 8, 6, input_dim=20)
        assert [n for n, _ in model.named_parameters()] == [
            "embed.E", "step.W", "step.R", "step.b", "linear.W", "linear.b",
        ]

    def test_formulations_agree_after_sync(self):
        from dynamite.model.networks import (
            create_model_function,
            create_model_function_unrolled,
        )
        from dynamite.training.sync import sync_parameters
        static = create_model_function(5, 8, 6, input_dim=20)
        unrolled = create_model_function_unrolled(5, 8, 6, input_dim=20)
        sync_parameters(unrolled, static)
        x = self._one_hot([1, 5, 19, 0], 20)
        assert torch.allclose(static(x), unrolled(x), atol=1e-5)

    def test_criterion(self):
        from dynamite.model.networks import create_criterion_function, create_model_function
        from dynamite.model.ops import cross_entropy_with_softmax
        model = create_model_function(3, 4, 5, input_dim=10)
        criterion = create_criterion_function(model)
        x = self._one_hot([1, 2], 10)
        y = torch.tensor([0.0, 1.0, 0.0])
        assert torch.allclose(criterion(x, y), cross_entropy_with_softmax(model(x), y))
        assert criterion.nested("model") is model.parameter_block

    def test_unrolled_minibatch_criterion(self):
        from dynamite.model.networks import (
            create_criterion_function,
            create_criterion_function_unrolled,
            create_model_function_unrolled,
        )
        model = create_model_function_unrolled(3, 4, 5, input_dim=10)
        features = [self._one_hot([1, 2], 10), self._one_hot([3], 10)]
        labels = [torch.tensor([1.0, 0.0, 0.0]), torch.tensor([0.0, 0.0, 1.0])]
        total = create_criterion_function_unrolled(model)(features, labels)
        single = create_criterion_function(model)
        expected = single(features[0], labels[0]) + single(features[1], labels[1])
        assert total.shape == ()
        assert torch.allclose(total, expected)

    def test_unrolled_minibatch_criterion_mismatch(self):
        from dynamite.model.networks import (
            create_criterion_function_unrolled,
            create_model_function_unrolled,
        )
        model = create_model_function_unrolled(3, 4, 5, input_dim=10)
        criterion = create_criterion_function_unrolled(model)
        with pytest.raises(ValueError, match="batch size mismatch"):
            criterion([self._one_hot([1], 10)], [])

    def test_seq2seq_losses(self):
        from dynamite.model.networks import create_model_function_s2s_att
        model = create_model_function_s2s_att(10, 4, 6, 3, input_dim=10)
        steps = [torch.eye(10)[i] for i in (2, 5, 7)]
        losses = model(steps, steps)
        assert len(losses) == 3
        assert all(loss.shape == () and loss.item() > 0 for loss in losses)

    def test_seq2seq_bidirectional(self):
        from dynamite.model.networks import create_model_function_s2s_att
        model = create_model_function_s2s_att(10, 4, 6, 3, input_dim=10, bidirectional=True)
        steps = [torch.eye(10)[i] for i in (1, 2)]
        assert len(model(steps, steps)) == 2
        assert model.parameter_block.find("attention.W_enc").shape == (3, 12)
        assert model.parameter_block.find("encoder.bwd.W").shape == (6, 4)

    def test_seq2seq_teacher_forcing(self):
        """Each step feeds back the true previous label, with a zero BOS first."""
        from dynamite.model.networks import create_model_function_s2s_att
        torch.manual_seed(0)
        model = create_model_function_s2s_att(10, 4, 6, 3, input_dim=10)
        eye = torch.eye(10)
        inputs = [eye[i] for i in (2, 5, 7)]
        labels = [eye[i] for i in (9, 1, 4)]

        losses = model(inputs, labels)

        encoded = model.encoder(model.embed(inputs))
        state = torch.zeros(6)
        prev = torch.zeros(10)
        expected = []
        for label in labels:
            context = model.attention(encoded, state)
            state = model.decoder(state, torch.cat([model.out_embed(prev), context]))
            z = model.out_proj(state)
            expected.append(torch.logsumexp(z, dim=0) - torch.dot(label, z))
            prev = label

        assert len(losses) == len(expected)
        for got, want in zip(losses, expected):
            assert torch.allclose(got, want, atol=1e-6)

    def test_seq2seq_gradients_reach_encoder(self):
        from dynamite.model.base import Batch
        from dynamite.model.networks import create_model_function_s2s_att
        model = create_model_function_s2s_att(10, 4, 6, 3, input_dim=10)
        seqs = [[torch.eye(10)[i] for i in (1, 2, 3)], [torch.eye(10)[4]]]
        loss = Batch.sum(Batch.mapper(model)(seqs, seqs))
        loss.backward()
        assert model.parameter_block.find("embed.E").grad is not None
        assert model.parameter_block.find("attention.v").grad is not None
