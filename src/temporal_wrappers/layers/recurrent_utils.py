"""
Recurrent Utilities

Helpers shared by the wrapper layers:

-   `rnn`: the step-execution primitive. Iterates a step function over the
    time axis (axis 1) of a tensor, carrying state from one step to the
    next, and returns the last output, the stacked per-step outputs and the
    final states. It keeps the signature of the classic Keras backend
    `rnn` driver but is written against the public `keras.ops` API so it
    runs on every Keras 3 backend.
-   `standardize_args`: separates the data input from initial states and
    constants when they are passed together as a single list.
-   `assert_input_compatibility`: validates a list of tensors against a
    list of `keras.InputSpec`.
"""

import keras
from keras import ops
from typing import Any, Callable, List, Optional, Sequence, Tuple

# ---------------------------------------------------------------------

StepFunction = Callable[[Any, List[Any]], Tuple[Any, List[Any]]]

# ---------------------------------------------------------------------


def is_symbolic(x: Any) -> bool:
    """Return True if `x` is a shape-only symbolic tensor."""
    return isinstance(x, keras.KerasTensor)


def _static_shape(x: Any) -> Tuple[Optional[int], ...]:
    return tuple(x.shape)


def _expand_mask(mask_t: Any, x: Any) -> Any:
    """Expand a `(batch,)` mask so that it broadcasts against `x`."""
    while len(mask_t.shape) < len(x.shape):
        mask_t = ops.expand_dims(mask_t, axis=-1)
    return mask_t

# ---------------------------------------------------------------------


def rnn(
        step_function: StepFunction,
        inputs: Any,
        initial_states: Optional[Sequence[Any]],
        go_backwards: bool = False,
        mask: Optional[Any] = None,
        constants: Optional[Sequence[Any]] = None,
        unroll: bool = False,
        input_length: Optional[int] = None
) -> Tuple[Any, Any, List[Any]]:
    """
    Iterate `step_function` over the time axis of `inputs`.

    Args:
        step_function: Callable `(inputs_t, states) -> (output_t, new_states)`.
            `inputs_t` has the shape of `inputs` with axis 1 removed and
            `states` is the list of carried states followed by `constants`.
        inputs: Tensor of shape `(batch, time, ...)`, at least 3D.
        initial_states: List of state tensors for the first step. May be
            empty or None for stateless step functions.
        go_backwards: If True, iterate from the last time step to the first.
            The stacked outputs are in iteration order.
        mask: Optional tensor of shape `(batch, time)`. Where the mask is
            false the previous output and states are carried over.
        constants: Optional list of tensors appended to the states passed to
            every step.
        unroll: Kept for signature compatibility. The loop is always a
            Python-level unrolled loop.
        input_length: Number of time steps. Defaults to the static length of
            axis 1 of `inputs`.

    Returns:
        Tuple `(last_output, outputs, new_states)` where `outputs` stacks
        the per-step outputs along axis 1.

    Raises:
        ValueError: If `inputs` is not at least 3D, the number of time steps
            is unknown, zero or inconsistent, or `mask` is malformed.
    """
    input_shape = _static_shape(inputs)
    if len(input_shape) < 3:
        raise ValueError(
            f"rnn expects inputs of rank >= 3 (batch, time, ...), "
            f"got shape {input_shape}"
        )

    time_steps = input_shape[1]
    if input_length is not None:
        if time_steps is not None and time_steps != input_length:
            raise ValueError(
                f"input_length={input_length} does not match the time axis "
                f"of inputs with shape {input_shape}"
            )
        time_steps = input_length
    if time_steps is None:
        raise ValueError(
            f"The number of time steps must be statically known, "
            f"got inputs with shape {input_shape}"
        )
    if time_steps <= 0:
        raise ValueError(f"rnn needs at least one time step, got {time_steps}")

    states = list(initial_states) if initial_states else []
    constants = list(constants) if constants else []

    if mask is not None:
        mask_shape = _static_shape(mask)
        if len(mask_shape) != 2 or any(
                m is not None and i is not None and m != i
                for m, i in zip(mask_shape, input_shape[:2])):
            raise ValueError(
                f"mask should have shape (samples, time), got {mask_shape} "
                f"for inputs with shape {input_shape}"
            )
        mask = ops.cast(mask, "bool")
        mask_list = ops.unstack(mask, num=time_steps, axis=1)

    input_list = ops.unstack(inputs, num=time_steps, axis=1)
    time_index = range(time_steps)
    if go_backwards:
        time_index = reversed(time_index)

    outputs = []
    output_tm1 = None
    for t in time_index:
        output_t, states_t = step_function(input_list[t], states + constants)
        states_t = list(states_t)
        if mask is not None:
            if output_tm1 is None:
                output_tm1 = ops.zeros_like(output_t)
            output_t = ops.where(_expand_mask(mask_list[t], output_t), output_t, output_tm1)
            states_t = [
                ops.where(_expand_mask(mask_list[t], state_t), state_t, state_tm1)
                for state_t, state_tm1 in zip(states_t, states)
            ]
        outputs.append(output_t)
        states = states_t
        output_tm1 = output_t

    return outputs[-1], ops.stack(outputs, axis=1), states

# ---------------------------------------------------------------------


def standardize_args(
        inputs: Any,
        initial_state: Optional[Any],
        constants: Optional[Any],
        num_constants: int
) -> Tuple[Any, Optional[List[Any]], Optional[List[Any]]]:
    """
    Standardize `__call__` arguments to `(inputs, initial_state, constants)`.

    When a layer is re-invoked from a saved graph, initial states and
    constants may arrive inside `inputs` as `[inputs, *states, *constants]`
    instead of through their dedicated keyword arguments.

    Args:
        inputs: Tensor, or list of tensors whose first element is the data.
        initial_state: Tensor, list of tensors or None.
        constants: Tensor, list of tensors or None.
        num_constants: Number of trailing constants inside an `inputs` list.

    Returns:
        The data tensor, and `initial_state` / `constants` as lists or None.

    Raises:
        ValueError: If `inputs` is a list and `initial_state` or `constants`
            were also given explicitly.
    """
    if isinstance(inputs, (list, tuple)):
        if initial_state is not None or constants is not None:
            raise ValueError(
                "initial_state and constants must not be passed both inside "
                "the inputs list and as keyword arguments"
            )
        inputs = list(inputs)
        if num_constants:
            constants = inputs[-num_constants:]
            inputs = inputs[:-num_constants]
        if len(inputs) > 1:
            initial_state = inputs[1:]
        inputs = inputs[0]

    def to_list_or_none(x):
        if x is None or isinstance(x, list):
            return x
        if isinstance(x, tuple):
            return list(x)
        return [x]

    return inputs, to_list_or_none(initial_state), to_list_or_none(constants)

# ---------------------------------------------------------------------


def assert_input_compatibility(
        input_specs: Sequence[Optional[keras.InputSpec]],
        inputs: Sequence[Any],
        layer_name: str
) -> None:
    """
    Check a list of tensors against a list of input specifications.

    Args:
        input_specs: One `keras.InputSpec` (or None to skip) per input.
        inputs: Tensors to validate, symbolic or concrete.
        layer_name: Name used in error messages.

    Raises:
        ValueError: If the number of inputs differs from the number of specs
            or any input violates its spec.
    """
    input_specs = list(input_specs)
    inputs = list(inputs)
    if len(inputs) != len(input_specs):
        raise ValueError(
            f'Layer "{layer_name}" expects {len(input_specs)} input(s), '
            f"but it received {len(inputs)} input tensors"
        )

    for index, (x, spec) in enumerate(zip(inputs, input_specs)):
        if spec is None:
            continue
        shape = _static_shape(x)
        ndim = len(shape)
        prefix = f'Input {index} of layer "{layer_name}" is incompatible with the layer:'

        if spec.ndim is not None and ndim != spec.ndim:
            raise ValueError(
                f"{prefix} expected ndim={spec.ndim}, found ndim={ndim}. "
                f"Full shape received: {shape}"
            )
        if spec.max_ndim is not None and ndim > spec.max_ndim:
            raise ValueError(
                f"{prefix} expected max_ndim={spec.max_ndim}, found ndim={ndim}"
            )
        if spec.min_ndim is not None and ndim < spec.min_ndim:
            raise ValueError(
                f"{prefix} expected min_ndim={spec.min_ndim}, found ndim={ndim}. "
                f"Full shape received: {shape}"
            )
        if spec.axes:
            for axis, value in spec.axes.items():
                if value is None:
                    continue
                if shape[axis] is not None and shape[axis] != value:
                    raise ValueError(
                        f"{prefix} expected axis {axis} of input shape to have "
                        f"value {value}, but received input with shape {shape}"
                    )
        if spec.shape is not None:
            for spec_dim, dim in zip(spec.shape, shape):
                if spec_dim is not None and dim is not None and spec_dim != dim:
                    raise ValueError(
                        f"{prefix} expected shape={spec.shape}, "
                        f"found shape={shape}"
                    )

# ---------------------------------------------------------------------
