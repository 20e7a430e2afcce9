# scratchnet/helpers/Backend.py
import os
import numpy as np

VERBOSE_STARTUP = os.environ.get("SCRATCHNET_VERBOSE", "1") != "0"

try:
    import cupy as cp
    # Quick runtime check
    try:
        _ = (cp.array([1, 2, 3]) + 1).sum()
        CUPY_AVAILABLE = True
    except Exception as e:
        print(f"CuPy installed but CUDA runtime error: {e}")
        print("Falling back to CPU (NumPy)")
        cp = None
        CUPY_AVAILABLE = False
except ImportError:
    cp = None
    CUPY_AVAILABLE = False


class Backend:
    """Dense tensor substrate shared by every layer (NumPy or CuPy)."""
    def __init__(self, use_gpu=True, default_float=np.float32, verbose=True):
        self.use_gpu = bool(use_gpu and CUPY_AVAILABLE)
        self.default_float = np.dtype(default_float).type
        self.verbose = verbose
        self.xp = cp if self.use_gpu else np
        if self.verbose:
            if self.use_gpu:
                print("Using GPU backend (CuPy)")
            else:
                print("Using CPU backend (NumPy)")

    @classmethod
    def from_env(cls):
        """Build the backend from SCRATCHNET_* environment variables."""
        use_gpu = os.environ.get("SCRATCHNET_USE_GPU", "1") != "0"
        default_float = np.dtype(os.environ.get("SCRATCHNET_DEFAULT_FLOAT", "float32"))
        return cls(use_gpu=use_gpu, default_float=default_float, verbose=VERBOSE_STARTUP)

    # -------- device transfer --------
    def to_cpu(self, x):
        """Move array to CPU (NumPy)."""
        if self.use_gpu and x is not None and isinstance(x, cp.ndarray):
            return cp.asnumpy(x)
        return x

    def ensure_array(self, x, dtype=None):
        """
        Ensure 'x' is an array of the current backend.
        Accepts list/tuple/np/cp arrays; returns xp.ndarray.
        """
        if isinstance(x, self.xp.ndarray):
            if dtype is not None and x.dtype != dtype:
                return x.astype(dtype)
            return x
        if self.use_gpu and isinstance(x, np.ndarray):
            arr = cp.asarray(x)
        elif (not self.use_gpu) and (cp is not None) and isinstance(x, cp.ndarray):
            arr = cp.asnumpy(x)
        else:
            arr = self.xp.asarray(x)
        if dtype is not None and arr.dtype != dtype:
            arr = arr.astype(dtype)
        return arr

    # -------- fall back to CPU on GPU failure --------
    def _fallback_to_cpu(self):
        """Switch to CPU backend when GPU operations fail."""
        self.use_gpu = False
        self.xp = np
        print("Switched to CPU backend (NumPy)")

    def _create(self, name, *args, **kwargs):
        try:
            return getattr(self.xp, name)(*args, **kwargs)
        except Exception as e:
            if self.use_gpu:
                print(f"GPU operation failed, falling back to CPU: {e}")
                self._fallback_to_cpu()
                return getattr(np, name)(*args, **kwargs)
            raise

    # -------- array creation --------
    def zeros(self, shape, dtype=None):
        return self._create("zeros", shape, dtype=self.default_float if dtype is None else dtype)

    def ones(self, shape, dtype=None):
        return self._create("ones", shape, dtype=self.default_float if dtype is None else dtype)

    def zeros_like(self, x):
        return self._create("zeros_like", x)

    # -------- shape helpers --------
    def reshape(self, x, shape):
        """Reshape; contiguous inputs give a view sharing memory with x."""
        return self.xp.reshape(x, shape)

    def flatten(self, x):
        return self.xp.ravel(x)

    def view(self, buffer, offset, size, shape=None):
        """
        Bounds-checked window ``buffer[offset:offset + size]`` over a flat
        buffer, optionally reshaped. Writes through the view land in buffer.
        """
        if offset < 0 or size < 0 or offset + size > buffer.size:
            raise ValueError(
                f"view [{offset}, {offset + size}) out of range for buffer of size {buffer.size}"
            )
        out = buffer[offset:offset + size]
        if shape is not None:
            out = out.reshape(shape)
        return out

    # -------- math / linalg (thin wrappers) --------
    def maximum(self, a, b):return self.xp.maximum(a, b)
    def minimum(self, a, b):return self.xp.minimum(a, b)
    def sum(self, x, axis=None, keepdims=False):  return self.xp.sum(x, axis=axis, keepdims=keepdims)
    def transpose(self, x, axes=None):            return self.xp.transpose(x, axes)
    def matmul(self, a, b):                        return self.xp.matmul(a, b)
    def arange(self, *args, **kwargs):             return self.xp.arange(*args, **kwargs)

    # -------- randomness --------
    def seed(self, seed=42):
        """Seed RNG for reproducibility."""
        if self.use_gpu:
            cp.random.seed(seed)
        np.random.seed(seed)  # layers initialise weights on the CPU

    # -------- delegate unknown attrs to xp --------
    def __getattr__(self, name):
        return getattr(self.xp, name)


# Global backend instance, configured from the environment
backend = Backend.from_env()
