from ..helpers.Backend import backend


class Layer:
    """
    Contract shared by every layer.

    forward(x)             -> output, also kept in self.output
    backward(x, grad_out)  -> gradient wrt the input, also kept in self.delta
    gradient(x, error)     -> flat parameter gradient, written into self.grad

    backward's x is the tensor the local derivative is read from (the layer's
    output for activations); gradient's x is the layer's input.
    """

    def __init__(self, parameters=None):
        if parameters is None:
            parameters = backend.zeros((0,))
        self.parameters = parameters
        self.grad = backend.zeros_like(parameters)
        self.output = None
        self.delta = None
        self.deterministic = False

    # Subclasses override as needed
    def forward(self, x):
        raise NotImplementedError

    def backward(self, x, grad_out):
        raise NotImplementedError

    def gradient(self, x, error):
        # No learnable parameters
        return self.grad

    def num_parameters(self):
        return int(self.parameters.size)

    def train_mode(self):
        self.deterministic = False

    def eval_mode(self):
        self.deterministic = True

    def params(self):
        # Return list of parameter ndarrays (e.g., [W, b])
        return []

    def grads(self):
        # Return list of gradient ndarrays matching params()
        return []

    # ----- persistence -----
    def get_config(self):
        return {"deterministic": self.deterministic}

    @classmethod
    def from_config(cls, config):
        layer = cls()
        layer.deterministic = config.get("deterministic", False)
        return layer

    def state_arrays(self):
        if self.num_parameters() == 0:
            return {}
        return {"parameters": self.parameters}

    def load_state_arrays(self, arrays):
        if "parameters" in arrays:
            self.parameters[...] = backend.ensure_array(arrays["parameters"])
