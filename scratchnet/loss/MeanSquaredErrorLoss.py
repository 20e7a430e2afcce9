from ..helpers.Backend import backend


class MeanSquaredErrorLoss:
    def __init__(self):
        # cache from forward
        self.diff = None
        self.m = None

    def forward(self, prediction, target):
        """
        prediction: (batch, features)
        target: same shape as prediction
        returns: loss scalar, mean over the batch of the summed squared error
        """
        prediction = backend.ensure_array(prediction)
        target = backend.ensure_array(target)

        self.m = prediction.shape[0]
        self.diff = prediction - backend.reshape(target, prediction.shape)
        loss = backend.sum(self.diff * self.diff) / self.m

        if backend.use_gpu:
            loss = backend.to_cpu(loss).item()
        else:
            loss = float(loss)
        return loss

    def backward(self):
        """
        dL/dprediction = 2 * (prediction - target) / m
        """
        if self.diff is None or self.m is None:
            raise ValueError("Must call forward() before backward()")
        return 2.0 * self.diff / self.m
