from .Layer import Layer
from .ReLU import ReLU
from .FullyConnectedLayer import FullyConnectedLayer
from .MeanPooling import MeanPooling
from .RecurrentAttention import RecurrentAttention, SnapshotStack

# Name -> class, used to rebuild layers from a saved configuration
LAYERS = {
    cls.__name__: cls
    for cls in (Layer, ReLU, FullyConnectedLayer, MeanPooling, RecurrentAttention)
}

__all__ = [
    "Layer",
    "ReLU",
    "FullyConnectedLayer",
    "MeanPooling",
    "RecurrentAttention",
    "SnapshotStack",
    "LAYERS",
]
