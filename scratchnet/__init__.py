from .helpers.Backend import backend
from .layers import (
    Layer,
    ReLU,
    FullyConnectedLayer,
    MeanPooling,
    RecurrentAttention,
)
from .loss.MeanSquaredErrorLoss import MeanSquaredErrorLoss
from .optimizer.SGDOptimizer import SGDOptimizer
from .helpers.checkpoint import save_layer, load_layer

__version__ = "0.1.0"
