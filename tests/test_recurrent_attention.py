import numpy as np
import pytest

from scratchnet.layers import FullyConnectedLayer, ReLU, RecurrentAttention, SnapshotStack
from scratchnet.helpers.gradient_check import check_parameter_gradient
from scratchnet.loss.MeanSquaredErrorLoss import MeanSquaredErrorLoss
from scratchnet.optimizer.SGDOptimizer import SGDOptimizer


def make_layer(rho=3, features=9, hidden=4):
    rnn = FullyConnectedLayer(features, hidden)
    action = FullyConnectedLayer(hidden, hidden)
    return RecurrentAttention(hidden, rnn, action, rho)


def glimpse_of(x, action_output):
    g = np.zeros((2, x.size))
    g[0] = x.ravel()
    g[1, :action_output.size] = action_output.ravel()
    return g


def reference_unroll(layer, x):
    """Plain NumPy unroll of the attention loop."""
    Wr, br = layer.rnn_module.weights, layer.rnn_module.bias
    Wa, ba = layer.action_module.weights, layer.action_module.bias
    h = None
    for t in range(layer.rho):
        action_in = np.zeros((x.shape[0], layer.out_size)) if t == 0 else h
        a = action_in @ Wa.T + ba.T
        h = glimpse_of(x, a) @ Wr.T + br.T
    return h


# ---------- SnapshotStack ----------

def test_snapshot_stack_is_lifo_and_copies():
    stack = SnapshotStack()
    a, b = np.zeros(2), np.ones(2)
    stack.push([a, b])
    stack.push([a + 1, b + 1])
    a[...] = 5.0

    assert len(stack) == 2
    top = stack.pop()
    np.testing.assert_array_equal(top[0], [1.0, 1.0])
    first = stack.pop()
    np.testing.assert_array_equal(first[0], [0.0, 0.0])
    assert len(stack) == 0
    assert stack.peek() is None


def test_snapshot_stack_underflow_raises():
    with pytest.raises(RuntimeError):
        SnapshotStack().pop()


# ---------- construction ----------

def test_modules_are_copied_at_construction():
    rnn = FullyConnectedLayer(9, 4)
    action = FullyConnectedLayer(4, 4)
    layer = RecurrentAttention(4, rnn, action, rho=2)

    assert layer.rnn_module is not rnn
    assert layer.action_module is not action
    assert not np.shares_memory(layer.rnn_module.parameters, rnn.parameters)
    np.testing.assert_array_equal(layer.rnn_module.parameters, rnn.parameters)
    # weight/bias views still alias the copied parameter vector
    assert np.shares_memory(layer.rnn_module.weights, layer.rnn_module.parameters)

    rnn.weights[...] = 0.0
    assert np.any(layer.rnn_module.weights != 0.0)
    assert layer.model() == [layer.rnn_module, layer.action_module]


@pytest.mark.parametrize("kwargs", [{"rho": 0}, {"out_size": 0}])
def test_rejects_non_positive_sizes(kwargs):
    args = {"out_size": 4, "rho": 2}
    args.update(kwargs)
    with pytest.raises(ValueError):
        RecurrentAttention(args["out_size"], FullyConnectedLayer(9, 4),
                           FullyConnectedLayer(4, 4), args["rho"])


# ---------- forward ----------

@pytest.mark.parametrize("rho", [1, 2, 4])
def test_forward_matches_reference_unroll(rho):
    layer = make_layer(rho=rho)
    x = np.random.randn(1, 9)

    out = layer.forward(x)
    assert out.shape == (2, 4)
    np.testing.assert_allclose(out, reference_unroll(layer, x))
    assert out is layer.rnn_module.output


def test_forward_pushes_one_snapshot_pair_per_step():
    layer = make_layer(rho=5)
    x = np.random.randn(1, 9)
    layer.forward(x)

    assert len(layer.snapshots) == 5
    assert layer.forward_step == 0
    assert layer.backward_step == 0

    layer.backward(layer.output, np.ones((2, 4)))
    assert len(layer.snapshots) == 0
    assert layer.backward_step == 5


def test_deterministic_mode_keeps_no_snapshots():
    layer = make_layer(rho=3)
    layer.eval_mode()
    x = np.random.randn(1, 9)

    out = layer.forward(x)
    assert len(layer.snapshots) == 0
    np.testing.assert_allclose(out, reference_unroll(layer, x))
    with pytest.raises(RuntimeError):
        layer.backward(out, np.ones_like(out))


def test_initial_input_is_zero_and_created_once():
    layer = make_layer(rho=2)
    layer.forward(np.random.randn(1, 9))
    initial = layer.initial_input
    assert initial.shape == (1, 4)
    assert not np.any(initial)

    layer.backward(layer.output, np.ones((2, 4)))
    layer.forward(np.random.randn(1, 9))
    assert layer.initial_input is initial


# ---------- backward ----------

def test_single_step_uses_external_gradient_directly():
    layer = make_layer(rho=1)
    x = np.random.randn(1, 9)
    out = layer.forward(x)
    gy = np.random.randn(*out.shape)

    delta = layer.backward(out, gy)
    assert layer.recurrent_error is gy
    # external input gradient is column 1 of the recurrent delta
    expected = (gy @ layer.rnn_module.weights)[1].reshape(x.shape)
    np.testing.assert_allclose(delta, expected)
    assert delta.shape == x.shape


def test_earlier_steps_receive_error_through_action_path():
    layer = make_layer(rho=3)
    x = np.random.randn(1, 9)
    out = layer.forward(x)
    gy = np.random.randn(*out.shape)

    delta = layer.backward(out, gy)
    # The action error is zero, so the action delta fed back as the recurrent
    # error of every earlier step is zero as well.
    assert layer.recurrent_error.shape == out.shape
    assert not np.any(layer.recurrent_error)
    expected = (gy @ layer.rnn_module.weights)[1].reshape(x.shape)
    np.testing.assert_allclose(delta, expected)


def test_replay_restores_snapshots_in_reverse_order():
    layer = make_layer(rho=3)
    layer.forward(np.random.randn(1, 9))
    first_rnn, first_action = layer.snapshots._items[0]

    layer.backward(layer.output, np.ones((2, 4)))
    # after the full replay the modules hold the outputs of time step 0
    np.testing.assert_array_equal(layer.rnn_module.output, first_rnn)
    np.testing.assert_array_equal(layer.action_module.output, first_action)


def test_second_backward_against_one_forward_raises():
    layer = make_layer(rho=2)
    out = layer.forward(np.random.randn(1, 9))
    layer.backward(out, np.ones_like(out))
    with pytest.raises(RuntimeError):
        layer.backward(out, np.ones_like(out))


def test_second_training_forward_without_backward_raises():
    layer = make_layer(rho=3)
    x = np.random.randn(1, 9)
    layer.forward(x)
    with pytest.raises(RuntimeError):
        layer.forward(x)
    assert len(layer.snapshots) == 3

    # a balanced cycle leaves nothing behind
    layer.backward(layer.output, np.ones((2, 4)))
    assert len(layer.snapshots) == 0
    layer.forward(x)
    layer.backward(layer.output, np.ones((2, 4)))
    assert len(layer.snapshots) == 0


def test_eval_forward_between_training_cycles_is_allowed():
    layer = make_layer(rho=2)
    x = np.random.randn(1, 9)
    layer.forward(x)
    layer.eval_mode()
    for _ in range(3):
        layer.forward(x)
    layer.train_mode()
    assert len(layer.snapshots) == 2
    layer.backward(layer.output, np.ones((2, 4)))
    assert len(layer.snapshots) == 0


def test_backward_before_forward_raises():
    layer = make_layer(rho=2)
    with pytest.raises(RuntimeError):
        layer.backward(np.zeros((2, 4)), np.zeros((2, 4)))


# ---------- gradient buffers ----------

def test_gradient_buffer_is_allocated_once_and_bound_by_offset():
    layer = make_layer(rho=2)
    n_rnn = layer.rnn_module.num_parameters()
    n_action = layer.action_module.num_parameters()

    out = layer.forward(np.random.randn(1, 9))
    layer.backward(out, np.ones_like(out))
    buffer = layer.intermediate_gradient
    total = layer.attention_gradient
    assert buffer.shape == (n_rnn + n_action,)
    assert layer.action_error.shape == (2, 4)

    # recurrent block first, action block right after it
    buffer[...] = 0.0
    buffer[0] = 1.0
    buffer[n_rnn] = 2.0
    assert layer.rnn_module.grad.size == n_rnn
    assert layer.rnn_module.grad[0] == 1.0
    assert layer.action_module.grad.size == n_action
    assert layer.action_module.grad[0] == 2.0

    out = layer.forward(np.random.randn(1, 9))
    layer.backward(out, np.ones_like(out))
    assert layer.intermediate_gradient is buffer
    assert layer.attention_gradient is total


def test_single_step_recurrent_gradient_is_exact():
    layer = make_layer(rho=1)
    x = np.random.randn(1, 9)
    out = layer.forward(x)
    gy = np.random.randn(*out.shape)
    layer.backward(out, gy)
    grad = layer.gradient(x, gy)

    glimpse = glimpse_of(x, layer.action_module.output)
    expected_rnn = np.concatenate([(gy.T @ glimpse).ravel(), gy.sum(axis=0)])
    n_rnn = layer.rnn_module.num_parameters()
    np.testing.assert_allclose(grad[:n_rnn], expected_rnn)
    # nothing writes the action error, so the action block stays zero
    assert not np.any(grad[n_rnn:])


def test_single_step_recurrent_gradient_matches_finite_differences():
    layer = make_layer(rho=1)
    x = np.random.randn(1, 9)
    # bind the module gradients to the shared buffer before collecting them
    layer.backward(layer.forward(x), np.zeros((2, 4)))
    error = check_parameter_gradient(
        layer, x,
        params=layer.rnn_module.params(),
        grads=layer.rnn_module.grads(),
    )
    assert error < 1e-6


def test_gradient_copies_totals_into_module_gradients():
    layer = make_layer(rho=3)
    x = np.random.randn(1, 9)
    out = layer.forward(x)
    layer.backward(out, np.random.randn(*out.shape))
    grad = layer.gradient(x, out)

    n_rnn = layer.rnn_module.num_parameters()
    assert grad is layer.attention_gradient
    np.testing.assert_array_equal(layer.rnn_module.grad, grad[:n_rnn])
    np.testing.assert_array_equal(layer.action_module.grad, grad[n_rnn:])
    dW, db = layer.rnn_module.grads()
    np.testing.assert_array_equal(dW.ravel(), grad[:dW.size])
    assert len(layer.params()) == len(layer.grads()) == 4


def test_gradient_before_backward_raises():
    layer = make_layer(rho=2)
    with pytest.raises(RuntimeError):
        layer.gradient(np.zeros((1, 9)), np.zeros((2, 4)))


def test_zero_parameter_action_module_is_skipped():
    layer = RecurrentAttention(3, FullyConnectedLayer(6, 3), ReLU(), rho=2)
    x = np.random.randn(1, 6)
    out = layer.forward(x)
    layer.backward(out, np.random.randn(*out.shape))
    grad = layer.gradient(x, out)

    assert grad.size == layer.rnn_module.num_parameters()
    assert layer.action_module.grad.size == 0
    np.testing.assert_array_equal(layer.rnn_module.grad, grad)


def test_zero_parameter_recurrent_module_is_skipped():
    layer = RecurrentAttention(4, ReLU(), FullyConnectedLayer(4, 2), rho=2)
    x = np.random.randn(1, 4)
    out = layer.forward(x)
    assert out.shape == (2, 4)
    delta = layer.backward(out, np.random.randn(*out.shape))
    grad = layer.gradient(x, out)

    assert delta.shape == x.shape
    assert grad.size == layer.action_module.num_parameters()
    assert layer.rnn_module.grad.size == 0
    np.testing.assert_array_equal(layer.action_module.grad, grad)


def evaluate(layer, x, target, loss_fn):
    layer.eval_mode()
    loss = loss_fn.forward(layer.forward(x), target)
    layer.train_mode()
    return loss


def test_sgd_on_module_gradients_reduces_loss():
    layer = make_layer(rho=1)
    x = np.random.randn(1, 9)
    target = np.random.randn(2, 4)
    loss_fn = MeanSquaredErrorLoss()
    optimizer = SGDOptimizer([layer], lr=0.05)

    initial = evaluate(layer, x, target, loss_fn)
    for _ in range(25):
        loss_fn.forward(layer.forward(x), target)
        layer.backward(layer.output, loss_fn.backward())
        layer.gradient(x, layer.output)
        optimizer.step()
    assert evaluate(layer, x, target, loss_fn) < initial


def test_zero_parameter_action_module_needs_small_batch():
    # earlier replays pair the one-row-per-sample initial input with a
    # two-row error; that only broadcasts for a batch of 1 or 2
    layer = RecurrentAttention(3, FullyConnectedLayer(18, 3), ReLU(), rho=2)
    x = np.random.randn(3, 6)
    out = layer.forward(x)
    with pytest.raises(ValueError):
        layer.backward(out, np.ones_like(out))
