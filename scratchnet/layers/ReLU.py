from .Layer import Layer
from ..helpers.Backend import backend


class ReLU(Layer):
    def forward(self, x):
        x = backend.ensure_array(x)
        self.output = backend.maximum(0, x)
        return self.output

    def backward(self, x, grad_out):
        # x is the forward output
        grad_out = backend.ensure_array(grad_out)
        self.delta = grad_out * (backend.ensure_array(x) > 0)
        return self.delta
