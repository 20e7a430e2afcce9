# helpers/logger.py
import csv, json, datetime, pathlib
import numpy as np
import matplotlib.pyplot as plt

from .checkpoint import save_layer


class RunLogger:
    """
    One directory per training run: history (CSV + JSON), per-layer .npz
    checkpoints, a regression summary and plots.
    """

    def __init__(self, root="runs", tag="run"):
        ts = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        self.tag = tag
        self.dir = pathlib.Path(root) / f"{tag}_{ts}"
        self.dir.mkdir(parents=True, exist_ok=True)
        self.csv_path = self.dir / "history.csv"
        self.json_path = self.dir / "history.json"
        self.metrics = []  # one row per epoch
        self._fieldnames = None

    # ---------- history ----------
    def log_epoch(self, epoch, **values):
        row = {"epoch": int(epoch)}
        row.update({k: float(v) for k, v in values.items()})
        self.metrics.append(row)

        with open(self.csv_path, "a", newline="") as f:
            if self._fieldnames is None:
                self._fieldnames = list(row)
                writer = csv.DictWriter(f, fieldnames=self._fieldnames)
                writer.writeheader()
            else:
                writer = csv.DictWriter(f, fieldnames=self._fieldnames)
            writer.writerow(row)

    def history(self, key):
        return [row[key] for row in self.metrics if key in row]

    def save_json(self):
        with open(self.json_path, "w") as f:
            json.dump(self.metrics, f, indent=2)
        return str(self.json_path)

    # ---------- checkpoints ----------
    def save_checkpoint(self, layers, best=False):
        """
        Save every layer of a stack as <name>_<best|last>.npz; returns the paths.
        layers: dict name -> layer
        """
        suffix = "best" if best else "last"
        return [
            save_layer(layer, self.dir / f"{name}_{suffix}.npz")
            for name, layer in layers.items()
        ]

    # ---------- regression summary ----------
    def save_summary(self, y_true, y_pred, filename="summary.json"):
        """Final regression metrics plus the best epoch by val_loss."""
        y_true = np.ravel(y_true)
        y_pred = np.ravel(y_pred)
        err = y_pred - y_true
        val = self.history("val_loss")

        summary = {
            "experiment_tag": self.tag,
            "timestamp": datetime.datetime.now().isoformat(),
            "mse": float(np.mean(err ** 2)),
            "mae": float(np.mean(np.abs(err))),
            "best_epoch": int(self.metrics[int(np.argmin(val))]["epoch"]) if val else None,
            "best_val_loss": float(min(val)) if val else None,
        }
        path = self.dir / filename
        with open(path, "w") as f:
            json.dump(summary, f, indent=2)
        return summary

    # ---------- plotting ----------
    def _plots_dir(self, subdir):
        out = self.dir / subdir
        out.mkdir(parents=True, exist_ok=True)
        return out

    def plot_loss(self, subdir="plots"):
        """Saves the logged loss / val_loss curves as loss_curve_<tag>.png."""
        train = self.history("loss")
        val = self.history("val_loss")

        plt.figure()
        if train:
            plt.plot(train, label="train loss")
        if val:
            plt.plot(val, label="val loss")
        plt.xlabel("Epoch")
        plt.ylabel("Mean Squared Error")
        plt.title(f"Loss vs Epochs ({self.tag})")
        if train or val:
            plt.legend()
        plt.tight_layout()
        path = self._plots_dir(subdir) / f"loss_curve_{self.tag}.png"
        plt.savefig(path, dpi=160)
        plt.close()
        return str(path)

    def plot_predictions(self, y_true, y_pred, subdir="plots"):
        """Scatter of predicted vs. true targets with the identity line."""
        y_true = np.ravel(y_true)
        y_pred = np.ravel(y_pred)
        lo = float(min(y_true.min(), y_pred.min()))
        hi = float(max(y_true.max(), y_pred.max()))

        plt.figure(figsize=(5, 5))
        plt.scatter(y_true, y_pred, s=8, alpha=0.6)
        plt.plot([lo, hi], [lo, hi], "k--", linewidth=1)
        plt.xlabel("Target")
        plt.ylabel("Prediction")
        plt.title(f"Predictions ({self.tag})")
        plt.tight_layout()
        path = self._plots_dir(subdir) / f"predictions_{self.tag}.png"
        plt.savefig(path, dpi=160)
        plt.close()
        return str(path)
