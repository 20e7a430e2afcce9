"""
Finite-difference checks for the layer contract.

Both checks use the scalar loss L = sum(forward(x) * P) for a fixed random
projection P, so the analytic gradients come from backward(output, P) and
gradient(x, P) and are compared with central differences of L.
"""
import numpy as np
from .Backend import backend


def _relative_error(analytic, numeric):
    a = np.ravel(backend.to_cpu(analytic))
    n = np.ravel(backend.to_cpu(numeric))
    denom = np.linalg.norm(a) + np.linalg.norm(n)
    if denom == 0.0:
        return 0.0
    return float(np.linalg.norm(a - n) / denom)


def _projected_loss(layer, x, projection):
    return float(backend.to_cpu(backend.sum(layer.forward(x) * projection)))


def _numeric_gradient(layer, x, projection, target, eps):
    # Evaluate in deterministic mode so forward leaves no training state behind
    was_deterministic = layer.deterministic
    layer.eval_mode()
    numeric = np.zeros(target.shape)
    try:
        for idx in np.ndindex(target.shape):
            orig = float(target[idx])
            target[idx] = orig + eps
            loss_plus = _projected_loss(layer, x, projection)
            target[idx] = orig - eps
            loss_minus = _projected_loss(layer, x, projection)
            target[idx] = orig
            numeric[idx] = (loss_plus - loss_minus) / (2.0 * eps)
    finally:
        if not was_deterministic:
            layer.train_mode()
    return numeric


def check_input_gradient(layer, x, eps=1e-6, seed=0, verbose=False):
    """Relative error between backward() and the numeric input gradient."""
    x = backend.ensure_array(x).copy()
    rng = np.random.RandomState(seed)

    output = layer.forward(x)
    projection = backend.ensure_array(rng.randn(*output.shape).astype(x.dtype))
    analytic = backend.reshape(layer.backward(layer.output, projection), x.shape)

    numeric = _numeric_gradient(layer, x, projection, x, eps)
    error = _relative_error(analytic, numeric)
    if verbose:
        print(f"[grad-check] {type(layer).__name__} input gradient rel. error: {error:.3e}")
    return error


def check_parameter_gradient(layer, x, params=None, grads=None, eps=1e-6, seed=0, verbose=False):
    """
    Relative error between gradient() and numeric parameter gradients.

    params / grads default to layer.params() / layer.grads(); pass matching
    subsets to check only part of a layer.
    """
    x = backend.ensure_array(x)
    rng = np.random.RandomState(seed)

    output = layer.forward(x)
    projection = backend.ensure_array(rng.randn(*output.shape).astype(x.dtype))
    layer.backward(layer.output, projection)
    layer.gradient(x, projection)

    if params is None:
        params = layer.params()
    if grads is None:
        grads = layer.grads()

    analytic = [np.array(backend.to_cpu(g)) for g in grads]
    numeric = [_numeric_gradient(layer, x, projection, p, eps) for p in params]

    error = _relative_error(
        np.concatenate([a.ravel() for a in analytic]) if analytic else np.zeros(0),
        np.concatenate([n.ravel() for n in numeric]) if numeric else np.zeros(0),
    )
    if verbose:
        print(f"[grad-check] {type(layer).__name__} parameter gradient rel. error: {error:.3e}")
    return error
