"""
Layer serialization helpers.

`deserialize_layer` resolves a serialized layer dictionary to a live layer
through the Keras class registry, and `clone_layer` uses a serialize /
deserialize round trip to produce a structurally independent copy of a
layer, optionally with some configuration fields overridden.
"""

import copy
import keras
from typing import Any, Dict, Optional

# ---------------------------------------------------------------------
# local imports
# ---------------------------------------------------------------------

from temporal_wrappers.utils.logger import logger

# ---------------------------------------------------------------------

# keys of a serialized layer that describe build or compile state
# rather than the layer's structure
_STATE_KEYS = ("build_config", "compile_config")

# ---------------------------------------------------------------------


def deserialize_layer(
        config: Dict[str, Any],
        custom_objects: Optional[Dict[str, Any]] = None
) -> keras.layers.Layer:
    """
    Resolve a serialized layer dictionary to a layer instance.

    Args:
        config: Dictionary with at least `class_name` and `config` entries,
            as produced by `keras.saving.serialize_keras_object`.
        custom_objects: Optional mapping of names to user-registered classes.

    Returns:
        A new `keras.layers.Layer` instance.

    Raises:
        ValueError: If `config` is malformed, names an unknown layer kind or
            resolves to something other than a layer.
    """
    if not isinstance(config, dict) or "class_name" not in config:
        raise ValueError(
            f"Expected a serialized layer dictionary with a 'class_name' "
            f"entry, got: {config}"
        )

    class_name = config["class_name"]
    try:
        layer = keras.saving.deserialize_keras_object(
            config, custom_objects=custom_objects
        )
    except TypeError as e:
        raise ValueError(
            f"Unknown layer kind '{class_name}'. Register it with "
            f"`keras.saving.register_keras_serializable()` or pass it "
            f"through `custom_objects`."
        ) from e

    if not isinstance(layer, keras.layers.Layer):
        raise ValueError(
            f"'{class_name}' does not resolve to a keras.layers.Layer, "
            f"got {type(layer).__name__}"
        )
    return layer


def clone_layer(layer: keras.layers.Layer, **config_overrides: Any) -> keras.layers.Layer:
    """
    Create an independent, unbuilt copy of `layer` from its configuration.

    The copy shares no variables or state with the source layer. Any keyword
    argument replaces the matching entry of the source configuration, e.g.
    `clone_layer(lstm, name="backward_lstm", go_backwards=True)`.

    Args:
        layer: The layer to copy.
        **config_overrides: Configuration fields to replace in the copy.

    Returns:
        A new layer of the same class as `layer`.
    """
    serialized = copy.deepcopy(keras.saving.serialize_keras_object(layer))
    for key in _STATE_KEYS:
        serialized.pop(key, None)
    serialized["config"].update(config_overrides)

    clone = deserialize_layer(serialized)
    logger.debug(
        f"Cloned {layer.__class__.__name__} '{layer.name}' as '{clone.name}'"
    )
    return clone

# ---------------------------------------------------------------------
