"""
Wrapper Base Layer

Abstract base class for layers that take another layer and augment its
behaviour without changing the computation it performs. The base class
forwards trainability, weights and losses to the wrapped layer and defines
the serialization layout shared by every wrapper:

    {"layer": <serialized inner layer>, "name": ..., "trainable": ..., ...}

Concrete wrappers are `TimeDistributed` and `Bidirectional`.
"""

import copy
import keras
from typing import Any, Dict, List, Optional, Tuple

# ---------------------------------------------------------------------
# local imports
# ---------------------------------------------------------------------

from temporal_wrappers.utils.logger import logger
from temporal_wrappers.layers.serialization import deserialize_layer

# ---------------------------------------------------------------------


class Wrapper(keras.layers.Layer):
    """
    Abstract wrapper base class.

    Do not use this class as a layer directly; subclass it and override
    `build`, `compute_output_shape` and `call`.

    Args:
        layer: The `keras.layers.Layer` instance to be wrapped. It must be
            supplied up front; it is validated and stored before anything
            else reads it.
        **kwargs: Additional keyword arguments for the Layer base class. A
            `trainable` entry is applied to the wrapped layer.

    Raises:
        ValueError: If `layer` is not a `keras.layers.Layer` instance.
    """

    def __init__(self, layer: keras.layers.Layer, **kwargs: Any) -> None:
        if not isinstance(layer, keras.layers.Layer):
            raise ValueError(
                f"Please initialize `{self.__class__.__name__}` with a "
                f"`keras.layers.Layer` instance. Received: {layer}"
            )
        trainable = kwargs.pop("trainable", None)
        super().__init__(**kwargs)
        self.layer = layer
        if trainable is not None:
            self.trainable = trainable

        logger.debug(f"Initialized {self.__class__.__name__} '{self.name}' "
                     f"wrapping '{layer.name}'")

    def build(self, input_shape: Optional[Tuple[Optional[int], ...]] = None) -> None:
        # the inner layer is built by subclasses, which know its input shape
        self.built = True

    @property
    def trainable(self) -> bool:
        return self.layer.trainable

    @trainable.setter
    def trainable(self, value: bool) -> None:
        self._trainable = bool(value)
        self.layer.trainable = value

    @property
    def trainable_weights(self) -> List[keras.Variable]:
        return self.layer.trainable_weights

    @property
    def non_trainable_weights(self) -> List[keras.Variable]:
        return self.layer.non_trainable_weights

    @property
    def losses(self) -> List[Any]:
        return self.layer.losses

    def get_weights(self) -> List[Any]:
        return self.layer.get_weights()

    def set_weights(self, weights: List[Any]) -> None:
        self.layer.set_weights(weights)

    def get_config(self) -> Dict[str, Any]:
        """
        Get layer configuration for serialization.

        Returns:
            The base layer configuration extended with a `layer` entry holding
            the serialized wrapped layer.
        """
        config = super().get_config()
        config.update({
            "layer": keras.saving.serialize_keras_object(self.layer),
        })
        return config

    @classmethod
    def from_config(
            cls,
            config: Dict[str, Any],
            custom_objects: Optional[Dict[str, Any]] = None
    ) -> "Wrapper":
        """
        Create a wrapper from its configuration.

        The wrapped layer is reconstructed first through the class registry,
        then the wrapper is constructed around it.

        Args:
            config: Dictionary produced by `get_config`.
            custom_objects: Optional mapping of names to user-registered
                classes needed to resolve the wrapped layer.

        Returns:
            A new wrapper instance.

        Raises:
            ValueError: If the wrapped layer's class cannot be resolved.
        """
        config = copy.deepcopy(config)
        layer = deserialize_layer(config.pop("layer"), custom_objects=custom_objects)
        return cls(layer, **config)

# ---------------------------------------------------------------------
