"""
Test suite for the TimeDistributed wrapper.

Covers shape inference, per-step equivalence with the wrapped layer,
forwarding of the training flag, serialization and use inside models.
"""

import os
import tempfile
import pytest
import numpy as np
import keras
import tensorflow as tf
from typing import Tuple

from temporal_wrappers.layers.time_distributed import TimeDistributed


class Doubler(keras.layers.Layer):
    """Layer whose call accepts no training argument."""

    def call(self, inputs):
        return inputs * 2.0

    def compute_output_shape(self, input_shape):
        return input_shape


@pytest.fixture
def sample_shape() -> Tuple[int, int, int]:
    """Sample input shape (batch, time, features)."""
    return (2, 3, 4)


@pytest.fixture
def sample_input(sample_shape: Tuple[int, int, int]) -> tf.Tensor:
    """Generate sample input tensor."""
    tf.random.set_seed(42)
    return tf.random.normal(sample_shape)


class TestTimeDistributed:
    """Test cases for the TimeDistributed layer."""

    def test_output_shape(self, sample_input: tf.Tensor) -> None:
        """Dense(1) over (2, 3, 4) yields (2, 3, 1)."""
        layer = TimeDistributed(keras.layers.Dense(1))
        output = layer(sample_input)
        assert tuple(output.shape) == (2, 3, 1)

    def test_matches_per_step_application(self, sample_input: tf.Tensor) -> None:
        """The output equals the inner layer applied to every time slice."""
        dense = keras.layers.Dense(5)
        layer = TimeDistributed(dense)
        output = keras.ops.convert_to_numpy(layer(sample_input))

        for t in range(sample_input.shape[1]):
            expected = keras.ops.convert_to_numpy(dense(sample_input[:, t]))
            assert np.allclose(output[:, t], expected, atol=1e-6)

    def test_build_requires_rank_3(self) -> None:
        layer = TimeDistributed(keras.layers.Dense(2))
        with pytest.raises(ValueError, match=r"\(2, 4\)"):
            layer.build((2, 4))

    def test_build(self) -> None:
        dense = keras.layers.Dense(2)
        layer = TimeDistributed(dense)
        layer.build((None, 3, 4))

        assert layer.built
        assert dense.built
        assert dense.kernel.shape == (4, 2)
        assert tuple(layer.input_spec.shape) == (None, 3, 4)

    def test_build_keeps_prebuilt_inner_layer(self) -> None:
        dense = keras.layers.Dense(2)
        dense.build((None, 4))
        kernel = dense.kernel

        layer = TimeDistributed(dense)
        layer.build((None, 3, 4))

        assert dense.kernel is kernel

    @pytest.mark.parametrize("input_shape, inner, expected", [
        ((None, 3, 4), keras.layers.Dense(1), (None, 3, 1)),
        ((8, 7, 4), keras.layers.Dense(6), (8, 7, 6)),
        ((None, None, 4), keras.layers.Dense(2), (None, None, 2)),
        ((None, 5, 8, 8, 3), keras.layers.Conv2D(4, 3), (None, 5, 6, 6, 4)),
        ((None, 5, 8, 8, 3), keras.layers.Flatten(), (None, 5, 192)),
    ])
    def test_compute_output_shape(self, input_shape, inner, expected) -> None:
        """The time axis is re-inserted whatever the inner output rank."""
        layer = TimeDistributed(inner)
        assert layer.compute_output_shape(input_shape) == expected

    def test_higher_rank_inputs(self) -> None:
        frames = tf.random.normal((2, 3, 6, 6, 1))
        layer = TimeDistributed(keras.layers.Conv2D(2, 3))
        output = layer(frames)
        assert tuple(output.shape) == (2, 3, 4, 4, 2)

    def test_training_flag_forwarded(self) -> None:
        """The inner layer receives the call-time training flag."""
        x = tf.ones((2, 3, 200))
        layer = TimeDistributed(keras.layers.Dropout(0.5))

        inference = keras.ops.convert_to_numpy(layer(x, training=False))
        training = keras.ops.convert_to_numpy(layer(x, training=True))

        assert np.allclose(inference, 1.0)
        assert np.any(training == 0.0)

    def test_inner_layer_without_training_arg(self, sample_input: tf.Tensor) -> None:
        layer = TimeDistributed(Doubler())
        output = layer(sample_input, training=True)
        assert np.allclose(
            keras.ops.convert_to_numpy(output),
            keras.ops.convert_to_numpy(sample_input) * 2.0,
        )

    def test_weights_are_inner_weights(self, sample_input: tf.Tensor) -> None:
        dense = keras.layers.Dense(3)
        layer = TimeDistributed(dense)
        layer(sample_input)

        assert len(layer.trainable_weights) == 2
        assert layer.trainable_weights == dense.trainable_weights
        assert len(layer.get_weights()) == 2

    def test_gradient_flow(self, sample_input: tf.Tensor) -> None:
        layer = TimeDistributed(keras.layers.Dense(3))

        with tf.GradientTape() as tape:
            outputs = layer(sample_input)
            loss = keras.ops.mean(keras.ops.square(outputs))

        grads = tape.gradient(loss, layer.trainable_weights)
        assert len(grads) == 2
        assert all(g is not None for g in grads)

    def test_batch_size_not_pinned(self) -> None:
        """A layer built on one batch size accepts another."""
        layer = TimeDistributed(keras.layers.Dense(1))
        layer(tf.zeros((2, 3, 4)))

        output = layer(tf.zeros((5, 3, 4)))

        assert tuple(output.shape) == (5, 3, 1)
        assert tuple(layer.input_spec.shape) == (None, 3, 4)

    def test_dynamic_time_axis(self) -> None:
        """Inputs whose time length is unknown until run time."""
        dense = keras.layers.Dense(2)
        layer = TimeDistributed(dense)
        layer.build((None, None, 4))

        @tf.function(input_signature=[tf.TensorSpec((None, None, 4), tf.float32)])
        def apply(x):
            return layer(x)

        for steps in (3, 5):
            x = tf.random.normal((2, steps, 4))
            output = keras.ops.convert_to_numpy(apply(x))
            assert output.shape == (2, steps, 2)
            assert np.allclose(output, keras.ops.convert_to_numpy(dense(x)), atol=1e-5)

    def test_supports_masking(self) -> None:
        layer = TimeDistributed(keras.layers.Dense(2))
        assert layer.supports_masking

    def test_serialization(self) -> None:
        original = TimeDistributed(keras.layers.Dense(3, name="td_dense"), name="td")
        config = original.get_config()

        restored = TimeDistributed.from_config(config)

        assert isinstance(restored.layer, keras.layers.Dense)
        assert restored.layer.units == 3
        assert restored.name == "td"
        assert restored.get_config() == config

    def test_serialization_built(self, sample_input: tf.Tensor) -> None:
        original = TimeDistributed(keras.layers.Dense(3))
        original(sample_input)

        config = original.get_config()
        restored = TimeDistributed.from_config(config)
        restored.build(tuple(sample_input.shape))

        assert restored.get_config()["layer"]["config"] == config["layer"]["config"]
        assert [w.shape for w in restored.get_weights()] == \
               [w.shape for w in original.get_weights()]

    def test_generic_deserialization(self) -> None:
        original = TimeDistributed(keras.layers.Dense(3))
        serialized = keras.saving.serialize_keras_object(original)

        restored = keras.saving.deserialize_keras_object(serialized)

        assert isinstance(restored, TimeDistributed)
        assert isinstance(restored.layer, keras.layers.Dense)


@pytest.mark.integration
class TestModelIntegration:
    """Integration tests for TimeDistributed inside models."""

    def test_sequential_model(self, sample_input: tf.Tensor) -> None:
        model = keras.Sequential([
            keras.layers.InputLayer(shape=(3, 4)),
            TimeDistributed(keras.layers.Dense(8)),
            TimeDistributed(keras.layers.Dense(1)),
        ])
        assert model.output_shape == (None, 3, 1)

        output = model(sample_input)
        assert tuple(output.shape) == (2, 3, 1)

    def test_functional_model(self, sample_input: tf.Tensor) -> None:
        inputs = keras.Input(shape=(3, 4))
        x = TimeDistributed(keras.layers.Dense(8), name="td_1")(inputs)
        assert tuple(x.shape) == (None, 3, 8)
        outputs = keras.layers.GlobalAveragePooling1D()(x)
        model = keras.Model(inputs=inputs, outputs=outputs)

        output = model.predict(sample_input, verbose=0)
        assert output.shape == (2, 8)

    def test_model_save_load(self, sample_input: tf.Tensor) -> None:
        inputs = keras.Input(shape=(3, 4))
        outputs = TimeDistributed(keras.layers.Dense(2), name="custom_td")(inputs)
        model = keras.Model(inputs=inputs, outputs=outputs)

        original_prediction = model.predict(sample_input, verbose=0)

        with tempfile.TemporaryDirectory() as tmpdirname:
            model_path = os.path.join(tmpdirname, "model.keras")
            model.save(model_path)
            loaded_model = keras.models.load_model(model_path)

            loaded_prediction = loaded_model.predict(sample_input, verbose=0)

            assert np.allclose(original_prediction, loaded_prediction, rtol=1e-5)
            assert isinstance(loaded_model.get_layer("custom_td"), TimeDistributed)

    def test_variable_length_sequences(self) -> None:
        inputs = keras.Input(shape=(None, 4))
        outputs = TimeDistributed(keras.layers.Dense(2))(inputs)
        assert tuple(outputs.shape) == (None, None, 2)
        model = keras.Model(inputs=inputs, outputs=outputs)

        for steps in (3, 4, 5, 6):
            prediction = model.predict(np.zeros((2, steps, 4), dtype="float32"), verbose=0)
            assert prediction.shape == (2, steps, 2)

    def test_training_pipeline(self, sample_input: tf.Tensor) -> None:
        model = keras.Sequential([
            keras.layers.InputLayer(shape=(3, 4)),
            TimeDistributed(keras.layers.Dense(4, activation="relu")),
            TimeDistributed(keras.layers.Dense(1)),
        ])
        model.compile(optimizer="adam", loss="mse")

        target = tf.random.normal((sample_input.shape[0], 3, 1))
        history = model.fit(sample_input, target, epochs=2, batch_size=1, verbose=0)

        assert len(history.history["loss"]) == 2
        assert not np.isnan(history.history["loss"][-1])
