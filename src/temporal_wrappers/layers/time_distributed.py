"""
TimeDistributed Wrapper Layer

Applies a layer to every temporal slice of an input.

The input must be at least 3D, and axis 1 is treated as the time axis.
Consider a batch of 32 samples where each sample is a sequence of 10
vectors of 16 dimensions: the batch input shape is `(32, 10, 16)`.
`TimeDistributed(Dense(8))` applies the same `Dense` layer, with the same
weights, to each of the 10 timesteps independently and produces an output
of shape `(32, 10, 8)`.

The inner layer is driven one step at a time by the step-execution
primitive `rnn`: each step hands the inner layer a slice of shape
`(batch, *features)` and the per-step results are stacked back along
axis 1. Any layer can be wrapped, not only `Dense`; a `Conv2D` over
`(batch, time, height, width, channels)` works the same way.

When the number of time steps is not known until run time, time is folded
into the batch axis instead: the inner layer runs once over
`(batch * time, *features)` and the result is reshaped back.
"""

import inspect
import keras
from keras import ops
from typing import Any, Dict, List, Optional, Tuple

# ---------------------------------------------------------------------
# local imports
# ---------------------------------------------------------------------

from temporal_wrappers.utils.logger import logger
from temporal_wrappers.layers.wrapper import Wrapper
from temporal_wrappers.layers.recurrent_utils import rnn

# ---------------------------------------------------------------------


def _per_step_shape(input_shape: Tuple[Optional[int], ...]) -> Tuple[Optional[int], ...]:
    """Drop the time axis (axis 1) from a full input shape."""
    return (input_shape[0],) + tuple(input_shape[2:])

# ---------------------------------------------------------------------


@keras.saving.register_keras_serializable()
class TimeDistributed(Wrapper):
    """
    Wrapper that applies a layer independently to every time step.

    Args:
        layer: A `keras.layers.Layer` instance applied to each time slice.
        **kwargs: Additional keyword arguments for the Layer base class.

    Input shape:
        Tensor of shape `(batch_size, time_steps, *features)`, at least 3D.

    Output shape:
        `(batch_size, time_steps, *inner_output_features)` where the inner
        output features are those the wrapped layer produces for an input of
        shape `(batch_size, *features)`.

    Example:
        ```python
        inputs = keras.Input(shape=(10, 16))
        outputs = TimeDistributed(keras.layers.Dense(8))(inputs)
        # outputs.shape == (None, 10, 8)

        frames = keras.Input(shape=(10, 64, 64, 3))
        features = TimeDistributed(keras.layers.Conv2D(32, 3))(frames)
        # features.shape == (None, 10, 62, 62, 32)
        ```

    Raises:
        ValueError: If built with an input of rank lower than 3.
    """

    def __init__(self, layer: keras.layers.Layer, **kwargs: Any) -> None:
        super().__init__(layer, **kwargs)
        self.supports_masking = True
        self._inner_call_has_training_arg = (
            "training" in inspect.signature(layer.call).parameters
        )

    def build(self, input_shape: Tuple[Optional[int], ...]) -> None:
        """
        Build the wrapped layer with the per-step input shape.

        Args:
            input_shape: Full input shape `(batch, time, *features)`.

        Raises:
            ValueError: If `input_shape` has fewer than 3 dimensions.
        """
        input_shape = tuple(input_shape)
        if len(input_shape) < 3:
            raise ValueError(
                f"TimeDistributed layer expects an input shape >= 3D, "
                f"but received input shape {input_shape}"
            )
        self.input_spec = keras.InputSpec(shape=(None,) + input_shape[1:])

        child_input_shape = _per_step_shape(input_shape)
        if not self.layer.built:
            self.layer.build(child_input_shape)
            logger.debug(f"Built '{self.layer.name}' with per-step shape {child_input_shape}")

        super().build(input_shape)

    def compute_output_shape(
            self,
            input_shape: Tuple[Optional[int], ...]
    ) -> Tuple[Optional[int], ...]:
        """
        Compute the output shape of the layer.

        Args:
            input_shape: Full input shape `(batch, time, *features)`.

        Returns:
            The wrapped layer's per-step output shape with the time axis
            re-inserted at position 1.
        """
        input_shape = tuple(input_shape)
        child_output_shape = tuple(
            self.layer.compute_output_shape(_per_step_shape(input_shape))
        )
        timesteps = input_shape[1]
        return (child_output_shape[0], timesteps) + child_output_shape[1:]

    def call(
            self,
            inputs: keras.KerasTensor,
            training: Optional[bool] = None
    ) -> keras.KerasTensor:
        """
        Apply the wrapped layer to each time slice of `inputs`.

        Args:
            inputs: Tensor of shape `(batch, time, *features)`.
            training: Forwarded to the wrapped layer when its `call`
                accepts it.

        Returns:
            The per-step outputs stacked along axis 1.
        """
        kwargs = {}
        if self._inner_call_has_training_arg:
            kwargs["training"] = training

        if inputs.shape[1] is None:
            return self._call_folded(inputs, kwargs)

        def step(x_t: keras.KerasTensor, states: List[Any]) -> Tuple[Any, List[Any]]:
            return self.layer.call(x_t, **kwargs), []

        _, outputs, _ = rnn(
            step,
            inputs,
            [],
            go_backwards=False,
            mask=None,
            constants=None,
            unroll=False,
            input_length=inputs.shape[1],
        )
        return outputs

    def _call_folded(self, inputs: keras.KerasTensor, kwargs: Dict[str, Any]) -> keras.KerasTensor:
        """
        Apply the wrapped layer when the number of time steps is only known
        at run time.

        Time is folded into the batch axis, the inner layer runs once over
        `(batch * time, *features)` and the result is unfolded again.
        """
        input_shape = ops.shape(inputs)
        batch_size, timesteps = input_shape[0], input_shape[1]

        folded = ops.reshape(inputs, (-1,) + tuple(input_shape[2:]))
        y = self.layer.call(folded, **kwargs)

        output_shape = ops.shape(y)
        return ops.reshape(y, (batch_size, timesteps) + tuple(output_shape[1:]))

# ---------------------------------------------------------------------
