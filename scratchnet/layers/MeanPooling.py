import math
from .Layer import Layer
from ..helpers.Backend import backend


class MeanPooling(Layer):
    """
    Mean pooling over every (height, width) slice of a 4-D input.

    With floor=True trailing windows that would leave the input are dropped;
    with floor=False they are kept and clipped, and each clipped window is
    averaged over its in-bounds cells only.

    In ceil mode with stride > kernel a trailing window can start wholly
    outside the input. It has no in-bounds cells, so its output (and the
    gradient it hands back) is undefined: NumPy yields NaN.
    """

    def __init__(
        self,
        kernel_width=2,
        kernel_height=2,
        stride_width=1,
        stride_height=1,
        floor=True,
    ):
        super().__init__()
        for name, value in (
            ("kernel_width", kernel_width),
            ("kernel_height", kernel_height),
            ("stride_width", stride_width),
            ("stride_height", stride_height),
        ):
            if int(value) <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value}")

        self.kernel_width = int(kernel_width)
        self.kernel_height = int(kernel_height)
        self.stride_width = int(stride_width)
        self.stride_height = int(stride_height)
        self.floor = bool(floor)

        # derived on every forward
        self.in_size = 0
        self.out_size = 0
        self.input_width = 0
        self.input_height = 0
        self.output_width = 0
        self.output_height = 0
        self.offset = 0
        self.batch_size = 0
        self.reset = False

    # ----- helpers -----
    def _output_dims(self):
        round_fn = math.floor if self.floor else math.ceil
        self.output_width = int(round_fn(
            (self.input_width - self.kernel_width) / self.stride_width + 1))
        self.output_height = int(round_fn(
            (self.input_height - self.kernel_height) / self.stride_height + 1))
        self.offset = 0 if self.floor else 1

    def _windows(self):
        # Start/end (exclusive) of every window along each axis, clipped to the input
        h0 = backend.arange(self.output_height) * self.stride_height
        w0 = backend.arange(self.output_width) * self.stride_width
        h1 = backend.minimum(h0 + self.kernel_height, self.input_height)
        w1 = backend.minimum(w0 + self.kernel_width, self.input_width)
        return h0, h1, w0, w1

    def forward(self, x):
        # x shape: (batch, channels, H, W), or (batch, features) with
        # input_width / input_height set beforehand
        # return: (batch, channels*H_out*W_out)
        x = backend.ensure_array(x)
        self.input_shape = x.shape
        self.batch_size = x.shape[0]
        if x.ndim == 4:
            self.input_height, self.input_width = x.shape[2], x.shape[3]
        H, W = self.input_height, self.input_width

        self.in_size = x.size // (W * H * self.batch_size)
        self.out_size = self.batch_size * self.in_size
        slices = backend.reshape(x, (self.out_size, H, W))

        self._output_dims()

        # Absolute positions of every window cell
        h0, _, w0, _ = self._windows()
        h_all = h0[:, None] + backend.arange(self.kernel_height)[None, :]  # (H_out, kh)
        w_all = w0[:, None] + backend.arange(self.kernel_width)[None, :]   # (W_out, kw)

        # Cells past the far edge (ceil mode) are clamped for the gather and
        # masked out of the sum and the divisor
        h_idx = backend.minimum(h_all, H - 1)[:, None, :, None]  # (H_out, 1, kh, 1)
        w_idx = backend.minimum(w_all, W - 1)[None, :, None, :]  # (1, W_out, 1, kw)
        mask = (h_all < H)[:, None, :, None] & (w_all < W)[None, :, None, :]  # (H_out, W_out, kh, kw)

        # Extract all pooling windows at once: (N, H_out, W_out, kh, kw)
        windows = slices[:, h_idx, w_idx]
        self.counts = backend.sum(mask, axis=(2, 3)).astype(slices.dtype)  # (H_out, W_out)

        pooled = backend.sum(windows * mask, axis=(3, 4)) / self.counts
        self.output = backend.reshape(pooled, (self.batch_size, -1))
        return self.output

    def backward(self, x, grad_out):
        """
        Spread every output gradient evenly over the cells its window
        averaged; overlapping windows accumulate.
        """
        grad_out = backend.ensure_array(grad_out)
        go = backend.reshape(grad_out, (self.out_size, self.output_height, self.output_width))
        go = go / self.counts

        grad_x = backend.zeros((self.out_size, self.input_height, self.input_width), dtype=go.dtype)
        h0, h1, w0, w1 = (backend.to_cpu(v) for v in self._windows())
        # Vectorized over all slices, one iteration per window position
        for i in range(self.output_height):
            for j in range(self.output_width):
                grad_x[:, h0[i]:h1[i], w0[j]:w1[j]] += go[:, i, j, None, None]

        self.delta = backend.reshape(grad_x, self.input_shape)
        return self.delta

    def get_config(self):
        config = super().get_config()
        config.update(
            kernel_width=self.kernel_width,
            kernel_height=self.kernel_height,
            stride_width=self.stride_width,
            stride_height=self.stride_height,
            floor=self.floor,
            batch_size=self.batch_size,
            input_width=self.input_width,
            input_height=self.input_height,
            output_width=self.output_width,
            output_height=self.output_height,
        )
        return config

    @classmethod
    def from_config(cls, config):
        layer = cls(
            config["kernel_width"],
            config["kernel_height"],
            config["stride_width"],
            config["stride_height"],
            floor=config["floor"],
        )
        layer.deterministic = config.get("deterministic", False)
        layer.batch_size = config.get("batch_size", 0)
        layer.input_width = config.get("input_width", 0)
        layer.input_height = config.get("input_height", 0)
        layer.output_width = config.get("output_width", 0)
        layer.output_height = config.get("output_height", 0)
        return layer
