# helpers/checkpoint.py
import json
import numpy as np
from .Backend import backend

CONFIG_KEY = "__config__"


def save_layer(layer, path):
    """
    Save a layer's configuration and state arrays to one .npz file.

    The configuration tree is stored as a JSON string under ``__config__``;
    arrays keep their slash-separated names (e.g. ``rnn_module/parameters``).
    """
    config = {"type": type(layer).__name__, "config": layer.get_config()}
    arrays = {k: backend.to_cpu(v) for k, v in layer.state_arrays().items()}
    np.savez(path, **{CONFIG_KEY: np.array(json.dumps(config))}, **arrays)
    return str(path)


def load_layer(path):
    """Rebuild a layer saved with save_layer()."""
    from ..layers import LAYERS

    with np.load(path) as data:
        config = json.loads(str(data[CONFIG_KEY]))
        arrays = {k: data[k] for k in data.files if k != CONFIG_KEY}

    layer_cls = LAYERS[config["type"]]
    layer = layer_cls.from_config(config["config"])
    layer.load_state_arrays(arrays)
    return layer
