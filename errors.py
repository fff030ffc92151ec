"""Error types raised by the graph, matrix and propagation modules."""


class PageRankError(ValueError):
    """Base class for rank computation failures."""


class InvalidParameter(PageRankError):
    """A tuning parameter (damping, iteration bound, epsilon, ...) is out of range."""


class InvalidGraph(PageRankError):
    """The link structure or the derived transition matrix is unusable."""
