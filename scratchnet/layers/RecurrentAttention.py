import copy
from .Layer import Layer
from ..helpers.Backend import backend


class SnapshotStack:
    """
    LIFO of per-step sub-layer outputs.

    forward() pushes one entry per unrolled step and the matching backward()
    pops every one of them, last pushed first.
    """

    def __init__(self):
        self._items = []

    def push(self, outputs):
        self._items.append(tuple(o.copy() for o in outputs))

    def pop(self):
        if not self._items:
            raise RuntimeError(
                "snapshot stack is empty: backward() needs a matching "
                "training-mode forward()"
            )
        return self._items.pop()

    def peek(self):
        if not self._items:
            return None
        return self._items[-1]

    def clear(self):
        self._items.clear()

    def __len__(self):
        return len(self._items)


class RecurrentAttention(Layer):
    """
    Glimpse-based attention loop unrolled for ``rho`` steps.

    Each step the action module proposes glimpse parameters (from a zero
    initial input at step 0, from the recurrent state afterwards) and the
    recurrent module consumes the glimpse. The layer output is the recurrent
    module's output after the last step.

    Both modules are copied at construction and owned by this layer. Each must
    be a single leaf layer; modules holding their own sub-layers are not
    supported. Earlier replays run the action backward against
    initial_input (one row per sample) with an error of two rows, so a
    zero-parameter action module only works for a batch of 1 or 2.

    In training mode every forward() must be followed by its backward()
    before the next forward(); a second training forward raises.
    """

    def __init__(self, out_size, rnn, action, rho):
        super().__init__()
        if out_size <= 0:
            raise ValueError(f"out_size must be positive, got {out_size}")
        if rho <= 0:
            raise ValueError(f"rho must be positive, got {rho}")

        self.out_size = out_size
        self.rho = rho
        self.rnn_module = copy.deepcopy(rnn)
        self.action_module = copy.deepcopy(action)
        # fixed snapshot order: recurrent module, then action module
        self.network = [self.rnn_module, self.action_module]

        self.forward_step = 0
        self.backward_step = 0
        self.snapshots = SnapshotStack()

        self.initial_input = None
        self.intermediate_gradient = None
        self.attention_gradient = None
        self.action_error = None
        self.action_delta = None
        self.rnn_delta = None
        self.recurrent_error = None
        self.x = None

    def model(self):
        return list(self.network)

    # ----- helpers -----
    def _glimpse(self, x, action_output):
        # column 0: the raw input, column 1: the action output, zero padded
        glimpse = backend.zeros((2, x.size), dtype=x.dtype)
        glimpse[0] = backend.flatten(x)
        glimpse[1, :action_output.size] = backend.flatten(action_output)
        return glimpse

    def _bind_gradients(self):
        offset = 0
        n_rnn = self.rnn_module.num_parameters()
        self.rnn_module.grad = backend.view(self.intermediate_gradient, offset, n_rnn)
        offset += n_rnn
        n_action = self.action_module.num_parameters()
        self.action_module.grad = backend.view(self.intermediate_gradient, offset, n_action)

    def _step_action_error(self):
        # Step 0 of the forward fed the initial input, which has one row per
        # sample; later steps have the glimpse's two rows.
        if self.action_error.shape == self.action_module.output.shape:
            return self.action_error
        return backend.zeros_like(self.action_module.output)

    def forward(self, x):
        if not self.deterministic and len(self.snapshots) != 0:
            raise RuntimeError(
                f"forward() with {len(self.snapshots)} snapshots still pending: "
                "call backward() first or switch to eval_mode()"
            )
        self.x = backend.ensure_array(x)  # cache for backward
        x = self.x
        # Initialize the action input.
        if self.initial_input is None:
            self.initial_input = backend.zeros((x.shape[0], self.out_size), dtype=x.dtype)

        self.forward_step = 0
        while self.forward_step < self.rho:
            if self.forward_step == 0:
                self.action_module.forward(self.initial_input)
            else:
                self.action_module.forward(self.rnn_module.output)

            glimpse = self._glimpse(x, self.action_module.output)
            self.rnn_module.forward(glimpse)

            if not self.deterministic:
                self.snapshots.push([layer.output for layer in self.network])
            self.forward_step += 1

        self.output = self.rnn_module.output
        self.forward_step = 0
        self.backward_step = 0
        return self.output

    def backward(self, x, grad_out):
        if self.deterministic:
            raise RuntimeError("backward() is not available in deterministic mode")
        if self.x is None:
            raise RuntimeError("backward() called before forward()")
        if self.backward_step >= self.rho:
            raise RuntimeError(
                "backward() already consumed the snapshots of the last forward()"
            )
        # x is unused: glimpses are rebuilt from the input cached by forward
        x = self.x
        grad_out = backend.ensure_array(grad_out)

        if self.intermediate_gradient is None and self.backward_step == 0:
            # Initialize the attention gradients.
            weights = self.rnn_module.num_parameters() + self.action_module.num_parameters()
            self.intermediate_gradient = backend.zeros((weights,), dtype=x.dtype)
            self.attention_gradient = backend.zeros((weights,), dtype=x.dtype)
            # Initialize the action error.
            self.action_error = backend.zeros_like(self.action_module.output)

        if self.backward_step == 0:
            self._bind_gradients()
            self.attention_gradient[...] = 0

        # Back-propagate through time.
        delta = None
        while self.backward_step < self.rho:
            rnn_output, action_output = self.snapshots.pop()
            self.rnn_module.output = rnn_output
            self.action_module.output = action_output

            if self.backward_step == 0:
                self.recurrent_error = grad_out
            else:
                self.recurrent_error = self.action_delta

            action_error = self._step_action_error()
            if self.backward_step == self.rho - 1:
                self.action_delta = self.action_module.backward(
                    self.action_module.output, action_error)
            else:
                self.action_delta = self.action_module.backward(
                    self.initial_input, action_error)

            self.rnn_delta = self.rnn_module.backward(
                self.rnn_module.output, self.recurrent_error)

            if delta is None:
                delta = self.rnn_delta[1].copy()
            else:
                delta += self.rnn_delta[1]

            self._intermediate_gradient(x, action_error)
            self.backward_step += 1

        self.delta = backend.reshape(delta, x.shape)
        return self.delta

    def _intermediate_gradient(self, x, action_error):
        self.intermediate_gradient[...] = 0

        # The action module saw the initial input at time step 0 and the
        # previous recurrent output after that; the previous step's snapshot
        # is still on top of the stack.
        if self.backward_step == self.rho - 1:
            action_input = self.initial_input
        else:
            action_input = self.snapshots.peek()[0]
        self.action_module.gradient(action_input, action_error)

        glimpse = self._glimpse(x, self.action_module.output)
        self.rnn_module.gradient(glimpse, self.recurrent_error)

        self.attention_gradient += self.intermediate_gradient

    def gradient(self, x, error):
        if self.attention_gradient is None:
            raise RuntimeError("gradient() needs a prior backward()")

        offset = 0
        n_rnn = self.rnn_module.num_parameters()
        if n_rnn != 0:
            self.rnn_module.grad[...] = backend.view(self.attention_gradient, offset, n_rnn)
            offset += n_rnn

        n_action = self.action_module.num_parameters()
        if n_action != 0:
            self.action_module.grad[...] = backend.view(self.attention_gradient, offset, n_action)

        self.grad = self.attention_gradient
        return self.grad

    def num_parameters(self):
        return self.rnn_module.num_parameters() + self.action_module.num_parameters()

    def params(self):
        return self.rnn_module.params() + self.action_module.params()

    def grads(self):
        return self.rnn_module.grads() + self.action_module.grads()

    def train_mode(self):
        super().train_mode()
        for layer in self.network:
            layer.train_mode()

    def eval_mode(self):
        super().eval_mode()
        for layer in self.network:
            layer.eval_mode()

    # ----- persistence -----
    def get_config(self):
        config = super().get_config()
        config.update(
            rho=self.rho,
            out_size=self.out_size,
            forward_step=self.forward_step,
            backward_step=self.backward_step,
            rnn_module={"type": type(self.rnn_module).__name__,
                        "config": self.rnn_module.get_config()},
            action_module={"type": type(self.action_module).__name__,
                           "config": self.action_module.get_config()},
        )
        return config

    @classmethod
    def from_config(cls, config):
        from . import LAYERS

        rnn = LAYERS[config["rnn_module"]["type"]].from_config(config["rnn_module"]["config"])
        action = LAYERS[config["action_module"]["type"]].from_config(
            config["action_module"]["config"])
        layer = cls(config["out_size"], rnn, action, config["rho"])
        layer.deterministic = config.get("deterministic", False)
        layer.forward_step = config.get("forward_step", 0)
        layer.backward_step = config.get("backward_step", 0)
        return layer

    def state_arrays(self):
        arrays = {}
        for name, layer in (("rnn_module", self.rnn_module), ("action_module", self.action_module)):
            for key, value in layer.state_arrays().items():
                arrays[f"{name}/{key}"] = value
        return arrays

    def load_state_arrays(self, arrays):
        for name, layer in (("rnn_module", self.rnn_module), ("action_module", self.action_module)):
            prefix = f"{name}/"
            layer.load_state_arrays(
                {k[len(prefix):]: v for k, v in arrays.items() if k.startswith(prefix)})
