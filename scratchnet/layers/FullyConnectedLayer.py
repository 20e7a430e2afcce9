import copy
import numpy as np
from .Layer import Layer
from ..helpers.Backend import backend


class FullyConnectedLayer(Layer):
    def __init__(self, in_features, out_features):
        # weights: (out_features, in_features)
        # bias: (out_features, 1)
        # both are views into one flat parameter vector
        self.in_features = in_features
        self.out_features = out_features
        dtype = backend.default_float

        super().__init__(backend.zeros((out_features * in_features + out_features,)))
        self._bind_parameters(self.parameters)

        # He initialization, on CPU, then move to backend
        weights_cpu = (
            np.random.randn(out_features, in_features) * np.sqrt(2.0 / in_features)
        ).astype(dtype)
        self.weights[...] = backend.ensure_array(weights_cpu)

    def _bind_parameters(self, parameters):
        n_weights = self.out_features * self.in_features
        self.parameters = parameters
        self.weights = backend.view(parameters, 0, n_weights, (self.out_features, self.in_features))
        self.bias = backend.view(parameters, n_weights, self.out_features, (self.out_features, 1))

    @property
    def grad(self):
        return self._grad

    @grad.setter
    def grad(self, buffer):
        # Re-derive dW/db so they alias whatever flat buffer we are bound to
        n_weights = self.out_features * self.in_features
        self._grad = buffer
        self.dW = backend.view(buffer, 0, n_weights, (self.out_features, self.in_features))
        self.db = backend.view(buffer, n_weights, self.out_features, (self.out_features, 1))

    def __deepcopy__(self, memo):
        # ndarray deepcopy drops view relationships, so rebuild them
        layer = copy.copy(self)
        layer._bind_parameters(self.parameters.copy())
        layer.grad = backend.zeros_like(layer.parameters)
        layer.output = None if self.output is None else self.output.copy()
        layer.delta = None
        return layer

    def forward(self, x):
        # x shape: (batch, in_features)
        # return: (batch, out_features)
        x = backend.ensure_array(x)
        self.output = backend.matmul(x, backend.transpose(self.weights)) + backend.transpose(self.bias)
        return self.output

    def backward(self, x, grad_out):
        # Only the weights matter here, x is unused
        grad_out = backend.ensure_array(grad_out)
        self.delta = backend.matmul(grad_out, self.weights)  # (B, in)
        return self.delta

    def gradient(self, x, error):
        # x: the input seen by forward, error: (B, out)
        x = backend.ensure_array(x)
        error = backend.ensure_array(error)
        self.dW[...] = backend.matmul(backend.transpose(error), x)  # (out, in)
        self.db[...] = backend.transpose(backend.sum(error, axis=0, keepdims=True))
        return self.grad

    def params(self):
        return [self.weights, self.bias]

    def grads(self):
        return [self.dW, self.db]

    def get_config(self):
        config = super().get_config()
        config.update(in_features=self.in_features, out_features=self.out_features)
        return config

    @classmethod
    def from_config(cls, config):
        layer = cls(config["in_features"], config["out_features"])
        layer.deterministic = config.get("deterministic", False)
        return layer
