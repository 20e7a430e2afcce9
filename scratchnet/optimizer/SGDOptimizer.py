class SGDOptimizer:
    """
    Plain SGD over a stack of layers.

    [param, grad] pairs are gathered from layer.params() / layer.grads() on
    every step: RecurrentAttention re-binds its modules' gradient views on
    backward.
    """

    def __init__(self, layers, lr=1e-2, weight_decay=0.0):
        self.layers = list(layers)
        self.lr = lr
        self.wd = weight_decay

    def parameters(self):
        ps = []
        for layer in self.layers:
            for p, g in zip(layer.params(), layer.grads()):
                ps.append([p, g])
        return ps

    def step(self):
        for p, g in self.parameters():
            if self.wd != 0.0:
                p -= self.lr * (g + self.wd * p)  # L2 weight decay
            else:
                p -= self.lr * g

    def zero_grad(self):
        for _, g in self.parameters():
            g[...] = 0.0
