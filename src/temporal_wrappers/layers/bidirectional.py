"""
Bidirectional Wrapper Layer

Runs a recurrent layer over a sequence twice, once in forward time order and
once in reverse, and merges the two output streams.

The supplied layer is never run itself. At construction it is cloned twice
from its configuration: a forward copy and a backward copy whose
`go_backwards` flag is inverted. The two copies own independent weights and
state, are built together when the wrapper is built, and are exposed as one
logical layer for weights, losses, trainability and serialization.

Merge modes:

-   `"concat"`: concatenate both outputs along the last axis.
-   `"sum"`: element-wise sum.
-   `"ave"`: element-wise average.
-   `"mul"`: element-wise product.
-   `None`: no merging; both outputs are returned as a list.

When the wrapped layer returns sequences, the backward output is flipped
along the time axis before merging so that index `t` of both streams refers
to input step `t`. When it returns states, the forward states followed by
the backward states are appended after the output(s), unmerged.
"""

import inspect
import keras
from keras import ops
from typing import Any, Dict, List, Optional, Tuple, Union

# ---------------------------------------------------------------------
# local imports
# ---------------------------------------------------------------------

from temporal_wrappers.utils.logger import logger
from temporal_wrappers.layers.wrapper import Wrapper
from temporal_wrappers.layers.serialization import clone_layer, deserialize_layer
from temporal_wrappers.layers.recurrent_utils import (
    is_symbolic,
    standardize_args,
    assert_input_compatibility,
)

# ---------------------------------------------------------------------

VALID_MERGE_MODES = ("sum", "mul", "concat", "ave", None)

_RECURRENT_ATTRIBUTES = ("go_backwards", "return_sequences", "return_state")

Shape = Tuple[Optional[int], ...]

# ---------------------------------------------------------------------


def _split_states(
        initial_state: Optional[List[Any]]
) -> Tuple[Optional[List[Any]], Optional[List[Any]]]:
    """Split a combined state list into forward and backward halves."""
    if not initial_state:
        return None, None
    num_states = len(initial_state)
    if num_states % 2 > 0:
        raise ValueError(
            f"When passing `initial_state` to a Bidirectional RNN, the state "
            f"should be a list containing the states of the underlying RNNs, "
            f"forward states first. Received {num_states} states."
        )
    half = num_states // 2
    return list(initial_state[:half]), list(initial_state[half:])

# ---------------------------------------------------------------------


@keras.saving.register_keras_serializable()
class Bidirectional(Wrapper):
    """
    Bidirectional wrapper for recurrent layers.

    Args:
        layer: A recurrent `keras.layers.Layer` instance exposing
            `go_backwards`, `return_sequences` and `return_state`, such as
            `keras.layers.LSTM`, `keras.layers.GRU` or
            `keras.layers.SimpleRNN`.
        merge_mode: Mode by which outputs of the forward and backward layers
            are combined. One of `"sum"`, `"mul"`, `"concat"`, `"ave"` or
            None. With None the outputs are returned as a list. Defaults to
            `"concat"`.
        weights: Initial weights. Not supported; must be None.
        **kwargs: Additional keyword arguments for the Layer base class.

    Input shape:
        `(batch_size, time_steps, features)`, optionally together with a list
        of initial states, forward states first.

    Output shape:
        The wrapped layer's output shape, with the last dimension doubled
        for `"concat"`, followed by `2 * num_states` state tensors when
        `return_state` is set.

    Example:
        ```python
        inputs = keras.Input(shape=(5, 4))
        outputs = Bidirectional(
            keras.layers.LSTM(3, return_sequences=True), merge_mode="concat"
        )(inputs)
        # outputs.shape == (None, 5, 6)
        ```

    Raises:
        ValueError: If `merge_mode` is invalid or `layer` is not a recurrent
            layer.
        NotImplementedError: If `weights` is given.
    """

    def __init__(
            self,
            layer: keras.layers.Layer,
            merge_mode: Optional[str] = "concat",
            weights: Optional[List[Any]] = None,
            **kwargs: Any
    ) -> None:
        if merge_mode not in VALID_MERGE_MODES:
            raise ValueError(
                f"Invalid merge mode. Received: {merge_mode}. Merge mode "
                f'should be one of {{"sum", "mul", "ave", "concat", None}}'
            )
        if weights is not None:
            raise NotImplementedError(
                "weights support is not implemented for Bidirectional layer yet."
            )
        if isinstance(layer, keras.layers.Layer):
            missing = [a for a in _RECURRENT_ATTRIBUTES if not hasattr(layer, a)]
            if missing:
                raise ValueError(
                    f"Bidirectional expects a recurrent layer, but "
                    f"'{layer.name}' has no attribute(s) {missing}"
                )

        # applied once both clones exist
        trainable = kwargs.pop("trainable", True)
        super().__init__(layer, **kwargs)

        self.forward_layer = clone_layer(layer, name=f"forward_{layer.name}")
        self.backward_layer = clone_layer(
            layer,
            name=f"backward_{layer.name}",
            go_backwards=not layer.go_backwards,
        )

        self.merge_mode = merge_mode
        self.stateful = getattr(layer, "stateful", False)
        self.return_sequences = layer.return_sequences
        self.return_state = layer.return_state
        self.supports_masking = False
        self.input_spec = layer.input_spec
        self._num_constants = 0
        self._inner_call_has_training_arg = (
            "training" in inspect.signature(layer.call).parameters
        )
        self.trainable = trainable

        logger.debug(
            f"Initialized Bidirectional '{self.name}' with merge_mode={merge_mode}, "
            f"clones '{self.forward_layer.name}' and '{self.backward_layer.name}'"
        )

    # --- trainability, weights and losses of both clones ---

    @property
    def trainable(self) -> bool:
        return self._trainable

    @trainable.setter
    def trainable(self, value: bool) -> None:
        self._trainable = bool(value)
        self.forward_layer.trainable = value
        self.backward_layer.trainable = value

    @property
    def trainable_weights(self) -> List[keras.Variable]:
        return (self.forward_layer.trainable_weights +
                self.backward_layer.trainable_weights)

    @property
    def non_trainable_weights(self) -> List[keras.Variable]:
        return (self.forward_layer.non_trainable_weights +
                self.backward_layer.non_trainable_weights)

    @property
    def losses(self) -> List[Any]:
        return self.forward_layer.losses + self.backward_layer.losses

    def get_weights(self) -> List[Any]:
        return self.forward_layer.get_weights() + self.backward_layer.get_weights()

    def set_weights(self, weights: List[Any]) -> None:
        """
        Set the weights of both clones from one flat list.

        The first half of `weights` goes to the forward layer and the rest
        to the backward layer. Both clones share a structure, so their weight
        lists have equal length.

        Args:
            weights: Forward weights followed by backward weights.
        """
        weights = list(weights)
        half = len(weights) // 2
        self.forward_layer.set_weights(weights[:half])
        self.backward_layer.set_weights(weights[half:])

    def reset_state(self) -> None:
        """Reset the recurrent state of both clones."""
        self.forward_layer.reset_state()
        self.backward_layer.reset_state()

    def reset_states(self) -> None:
        # alias matching the recurrent layer API
        self.reset_state()

    # --- shape inference ---

    def build(self, sequences_shape: Shape, initial_state_shape: Optional[Any] = None) -> None:
        """
        Build the forward and backward layers against the same input shape.

        Each clone builds inside its own name scope, so variable paths start
        with `forward_<name>` and `backward_<name>` and never collide.

        Args:
            sequences_shape: Shape of the input sequences.
            initial_state_shape: Shapes of the initial states, if any.
        """
        if not self.forward_layer.built:
            self.forward_layer.build(sequences_shape)
        if not self.backward_layer.built:
            self.backward_layer.build(sequences_shape)
        logger.debug(f"Built '{self.forward_layer.name}' and "
                     f"'{self.backward_layer.name}' with shape {sequences_shape}")
        self.built = True

    def compute_output_shape(
            self,
            sequences_shape: Shape,
            initial_state_shape: Optional[Any] = None
    ) -> Union[Shape, List[Shape]]:
        """
        Compute the output shape(s) of the layer.

        Only the forward layer is consulted; the backward layer differs in
        direction alone and has the same output shape.

        Args:
            sequences_shape: Shape of the input sequences.
            initial_state_shape: Shapes of the initial states, if any.

        Returns:
            A single shape tuple, or a list of shape tuples when `merge_mode`
            is None or `return_state` is set.
        """
        layer_shapes = self.forward_layer.compute_output_shape(sequences_shape)
        state_shapes = []
        if self.return_state:
            layer_shapes = list(layer_shapes)
            output_shape = list(layer_shapes[0])
            for state_shape in layer_shapes[1:]:
                if state_shape and isinstance(state_shape[0], (list, tuple)):
                    state_shapes.extend(tuple(s) for s in state_shape)
                else:
                    state_shapes.append(tuple(state_shape))
        else:
            output_shape = list(layer_shapes)

        if self.merge_mode == "concat":
            if output_shape[-1] is not None:
                output_shape[-1] *= 2
            output_shapes = [tuple(output_shape)]
        elif self.merge_mode is None:
            output_shapes = [tuple(output_shape), tuple(output_shape)]
        else:
            output_shapes = [tuple(output_shape)]

        if self.return_state:
            return output_shapes + state_shapes + list(state_shapes)
        if self.merge_mode is None:
            return output_shapes
        return output_shapes[0]

    # --- execution ---

    def __call__(
            self,
            inputs: Any,
            initial_state: Optional[Any] = None,
            constants: Optional[Any] = None,
            **kwargs: Any
    ) -> Any:
        """
        Connect or apply the layer, accepting the wrapped layer's call API.

        Initial states may be given through `initial_state` or inside
        `inputs` as `[sequences, *states]`. Symbolic and concrete states take
        separate validation paths, each building its own list of input specs.

        Raises:
            NotImplementedError: If `constants` is given.
            ValueError: If the number of states is odd, symbolic and concrete
                states are mixed, or an input violates its spec.
        """
        inputs, initial_state, constants = standardize_args(
            inputs, initial_state, constants, self._num_constants
        )
        if constants is not None:
            raise NotImplementedError(
                "Support for constants in Bidirectional layers is not "
                "implemented yet."
            )
        if not initial_state:
            return super().__call__(inputs, **kwargs)

        # raises on an odd number of states
        _split_states(initial_state)
        symbolic = is_symbolic(initial_state[0])
        for state in initial_state:
            if is_symbolic(state) != symbolic:
                raise ValueError(
                    "The initial state of a Bidirectional layer cannot be "
                    "specified as a mix of symbolic and non-symbolic tensors"
                )

        if symbolic:
            state_specs = [keras.InputSpec(shape=tuple(s.shape)) for s in initial_state]
            assert_input_compatibility(
                [self.input_spec] + state_specs,
                [inputs] + list(initial_state),
                self.name,
            )
        else:
            assert_input_compatibility([self.input_spec], [inputs], self.name)

        return super().__call__(inputs, initial_state=initial_state, **kwargs)

    def call(
            self,
            sequences: keras.KerasTensor,
            initial_state: Optional[List[keras.KerasTensor]] = None,
            mask: Optional[keras.KerasTensor] = None,
            training: Optional[bool] = None
    ) -> Union[keras.KerasTensor, List[keras.KerasTensor]]:
        """
        Run both directions over `sequences` and merge the results.

        Args:
            sequences: Input tensor of shape `(batch, time, features)`.
            initial_state: Optional list of initial states, forward states
                first, then backward states.
            mask: Not supported; must be None.
            training: Forwarded to both clones when the wrapped layer's
                `call` accepts it.

        Returns:
            The merged output, or `[forward, backward]` when `merge_mode` is
            None, followed by forward and backward states when
            `return_state` is set.

        Raises:
            NotImplementedError: If a mask is supplied.
        """
        if mask is not None:
            raise NotImplementedError(
                "The support for masking is not implemented for "
                "Bidirectional layers yet."
            )
        forward_state, backward_state = _split_states(initial_state)

        kwargs = {}
        if self._inner_call_has_training_arg:
            kwargs["training"] = training

        y = self.forward_layer(sequences, initial_state=forward_state, **kwargs)
        y_rev = self.backward_layer(sequences, initial_state=backward_state, **kwargs)

        states = []
        if self.return_state:
            states = list(y[1:]) + list(y_rev[1:])
            y = y[0]
            y_rev = y_rev[0]

        if self.return_sequences:
            y_rev = ops.flip(y_rev, axis=1)

        if self.merge_mode == "concat":
            output = ops.concatenate([y, y_rev], axis=-1)
        elif self.merge_mode == "sum":
            output = ops.add(y, y_rev)
        elif self.merge_mode == "ave":
            output = ops.multiply(ops.add(y, y_rev), 0.5)
        elif self.merge_mode == "mul":
            output = ops.multiply(y, y_rev)
        else:
            output = [y, y_rev]

        if self.return_state:
            if self.merge_mode is None:
                return output + states
            return [output] + states
        return output

    # --- serialization ---

    def get_config(self) -> Dict[str, Any]:
        """
        Get layer configuration for serialization.

        Returns:
            The wrapper configuration, holding the original layer rather than
            either clone, plus `merge_mode`.
        """
        config = super().get_config()
        config.update({
            "merge_mode": self.merge_mode,
        })
        return config

    @classmethod
    def from_config(
            cls,
            config: Dict[str, Any],
            custom_objects: Optional[Dict[str, Any]] = None
    ) -> "Bidirectional":
        """
        Create a Bidirectional layer from its configuration.

        The original layer is reconstructed through the class registry and
        cloned again into forward and backward layers, exactly as at
        construction.

        Raises:
            NotImplementedError: If the configuration carries `num_constants`.
            ValueError: If the wrapped layer's class cannot be resolved.
        """
        config = dict(config)
        if config.pop("num_constants", None) is not None:
            raise NotImplementedError(
                "Deserialization of a Bidirectional layer with num_constants "
                "present is not supported yet."
            )
        layer = deserialize_layer(config.pop("layer"), custom_objects=custom_objects)
        return cls(layer, **config)

# ---------------------------------------------------------------------
