# RAM_predictions.py
# Trains MeanPooling -> RecurrentAttention -> ReLU -> FullyConnectedLayer on a
# synthetic regression task: predict the brightness of a square hidden in a
# noisy image.
import time
import numpy as np

from scratchnet import (
    backend,
    MeanPooling,
    RecurrentAttention,
    ReLU,
    FullyConnectedLayer,
    MeanSquaredErrorLoss,
)
from scratchnet.optimizer.SGDOptimizer import SGDOptimizer
from scratchnet.helpers.logger import RunLogger


def make_dataset(n, size=6, seed=0):
    rng = np.random.RandomState(seed)
    X = rng.rand(n, 1, size, size).astype(backend.default_float) * 0.1
    Y = np.zeros((n, 1), dtype=backend.default_float)
    for i in range(n):
        r, c = rng.randint(0, size - 2, size=2)
        level = rng.rand()
        X[i, 0, r:r + 2, c:c + 2] += level
        Y[i, 0] = level
    return X, Y


class GlimpseRegressor:
    def __init__(self, image_size=6, hidden=4, rho=3):
        pooled = (image_size // 2) ** 2
        self.pool = MeanPooling(2, 2, 2, 2)
        self.ram = RecurrentAttention(
            hidden,
            FullyConnectedLayer(pooled, hidden),
            FullyConnectedLayer(hidden, hidden),
            rho,
        )
        self.relu = ReLU()
        self.head = FullyConnectedLayer(2 * hidden, 1)

    def layers(self):
        return {"pool": self.pool, "ram": self.ram, "relu": self.relu, "head": self.head}

    def forward(self, x):
        h = self.pool.forward(x)
        h = self.ram.forward(h)
        h = self.relu.forward(h)
        self.flat = backend.reshape(h, (1, -1))
        return self.head.forward(self.flat)

    def backward(self, grad):
        self.head.gradient(self.flat, grad)
        grad = self.head.backward(self.head.output, grad)
        grad = backend.reshape(grad, self.relu.output.shape)
        grad = self.relu.backward(self.relu.output, grad)
        grad = self.ram.backward(self.ram.output, grad)
        self.ram.gradient(self.pool.output, grad)
        return self.pool.backward(self.pool.output, grad)

    def evaluate(self, X, Y, loss_fn):
        # returns (mean loss, predictions)
        self.ram.eval_mode()
        total = 0.0
        preds = np.zeros(len(X))
        for i, (x, y) in enumerate(zip(X, Y)):
            pred = self.forward(backend.ensure_array(x[None]))
            total += loss_fn.forward(pred, backend.ensure_array(y[None]))
            preds[i] = float(backend.to_cpu(pred).ravel()[0])
        self.ram.train_mode()
        return total / len(X), preds


if __name__ == "__main__":
    backend.seed(42)

    X_tr, Y_tr = make_dataset(400, seed=0)
    X_val, Y_val = make_dataset(100, seed=1)

    epochs = 20
    lr = 0.01
    tag = f"RAM_glimpse_epochs_{epochs}_lr_{lr}"

    model = GlimpseRegressor()
    optimizer = SGDOptimizer([model.ram, model.head], lr=lr)
    loss_fn = MeanSquaredErrorLoss()
    logger = RunLogger(root="runs", tag=tag)

    print(f"Training {tag}")
    for ep in range(1, epochs + 1):
        t0 = time.time()
        idx = np.random.permutation(len(X_tr))
        for i in idx:
            pred = model.forward(backend.ensure_array(X_tr[i][None]))
            loss_fn.forward(pred, backend.ensure_array(Y_tr[i][None]))
            model.backward(loss_fn.backward())
            optimizer.step()

        train_loss, _ = model.evaluate(X_tr, Y_tr, loss_fn)
        val_loss, _ = model.evaluate(X_val, Y_val, loss_fn)
        best = not logger.history("val_loss") or val_loss <= min(logger.history("val_loss"))

        logger.log_epoch(ep, time_s=time.time() - t0, loss=train_loss, val_loss=val_loss)
        logger.save_checkpoint(model.layers(), best=False)
        if best:
            logger.save_checkpoint(model.layers(), best=True)
        print(f"Epoch {ep}/{epochs} - loss: {train_loss:.4f} - val_loss: {val_loss:.4f}")

    _, val_pred = model.evaluate(X_val, Y_val, loss_fn)
    summary = logger.save_summary(Y_val, val_pred)
    print(f"Validation MSE: {summary['mse']:.4f} - MAE: {summary['mae']:.4f} (best epoch {summary['best_epoch']})")

    logger.save_json()
    print("Loss curve:", logger.plot_loss())
    print("Predictions:", logger.plot_predictions(Y_val, val_pred))
