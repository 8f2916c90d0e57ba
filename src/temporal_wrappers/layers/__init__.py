"""Keras Wrapper Layers.

Layers that take another layer and augment its temporal or directional
behaviour without changing the computation it performs.

Available Layers:
-----------------
-   `Wrapper`: Abstract base that forwards trainability, weights and losses
    to the wrapped layer and defines the shared serialization layout.
-   `TimeDistributed`: Applies a layer independently to every time step of a
    `(batch, time, ...)` input.
-   `Bidirectional`: Runs a recurrent layer forward and backward in time and
    merges both outputs.

Helpers:
--------
-   `rnn`: Step-execution primitive driving a step function over the time
    axis.
-   `clone_layer` / `deserialize_layer`: Config round-trip cloning and class
    registry lookup.
"""

from .wrapper import Wrapper
from .time_distributed import TimeDistributed
from .bidirectional import Bidirectional, VALID_MERGE_MODES
from .recurrent_utils import rnn, standardize_args, assert_input_compatibility
from .serialization import clone_layer, deserialize_layer

__all__ = [
    "Wrapper",
    "TimeDistributed",
    "Bidirectional",
    "VALID_MERGE_MODES",
    "rnn",
    "standardize_args",
    "assert_input_compatibility",
    "clone_layer",
    "deserialize_layer",
]
