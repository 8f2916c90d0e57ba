"""Keras wrapper layers that augment the temporal and directional behaviour
of an existing layer: `TimeDistributed` and `Bidirectional`."""

__version__ = "0.1.0"
