from __future__ import annotations

import logging
from numbers import Real
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np

from errors import InvalidGraph, InvalidParameter
from graph_builder import build_node_index, build_nodes, is_dangling_node

log = logging.getLogger(__name__)

DEFAULT_DAMPING = 0.85  # Pr(follow a link) vs. teleport
ROW_SUM_TOLERANCE = 1e-9


class AdjacencyMatrix:
    """
    Dense, read-only transition matrix G keyed by node id.

    G[i, j] is the probability of moving from node i to node j. Rows are
    indexed in ascending node-id order.
    """

    def __init__(self, node_index: Dict[int, int], probabilities: np.ndarray):
        self.node_index = dict(node_index)
        self.nodes: Tuple[int, ...] = tuple(sorted(self.node_index, key=self.node_index.__getitem__))
        probabilities = np.array(probabilities, dtype=float)
        probabilities.setflags(write=False)
        self.probabilities = probabilities

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.node_index

    def __iter__(self) -> Iterator[int]:
        return iter(self.nodes)

    def __getitem__(self, key: Tuple[int, int]) -> float:
        source, target = key
        return float(self.probabilities[self.node_index[source], self.node_index[target]])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AdjacencyMatrix):
            return NotImplemented
        return self.node_index == other.node_index and np.array_equal(
            self.probabilities, other.probabilities
        )

    def __repr__(self) -> str:
        return f"AdjacencyMatrix(nodes={len(self)})"

    def row(self, source: int) -> Dict[int, float]:
        """All destinations of one source, zero entries included."""
        values = self.probabilities[self.node_index[source]]
        return {target: float(values[idx]) for target, idx in self.node_index.items()}

    def row_sums(self) -> Dict[int, float]:
        sums = self.probabilities.sum(axis=1)
        return {node_id: float(sums[idx]) for node_id, idx in self.node_index.items()}


def _check_damping(damping) -> float:
    if isinstance(damping, bool) or not isinstance(damping, Real):
        raise InvalidParameter(f"Damping factor must be a number, got {damping!r}")
    if not 0.0 <= damping <= 1.0:
        raise InvalidParameter(f"Damping factor must be in [0, 1], got {damping}")
    return float(damping)


def build_probability_matrix(
    links: Mapping[int, Sequence[int]], node_index: Dict[int, int]
) -> np.ndarray:
    """
    Raw transition probabilities S (stage 1).

    A destination listed k times by a source with N out-links gets k / N;
    repeated links are counted, not deduplicated. Dangling rows stay all zero.
    """
    n = len(node_index)
    S = np.zeros((n, n), dtype=float)

    for source, targets in links.items():
        if not targets:
            continue
        src_idx = node_index[source]
        tgt_idx = [node_index[target] for target in targets]
        np.add.at(S[src_idx], tgt_idx, 1.0)
        S[src_idx] /= len(tgt_idx)

    return S


def build_damped_matrix(
    links: Mapping[int, Sequence[int]],
    nodes: Optional[Mapping[int, float]] = None,
    damping: float = DEFAULT_DAMPING,
) -> AdjacencyMatrix:
    """
    Random surfer transition matrix G (stage 2).

    With probability d the surfer follows one of the node's links, otherwise
    it jumps to any of the n nodes:

        G[i][j] = d * S[i][j] + (1 - d) / n

    A dangling node has no link to follow, so its whole row is 1 / n.
    """
    d = _check_damping(damping)
    if nodes is None:
        nodes = build_nodes(links)

    n = len(nodes)
    if n == 0:
        raise InvalidGraph("Cannot build a transition matrix for an empty node set")

    node_index = build_node_index(nodes)
    missing = {
        node_id
        for source, targets in links.items()
        for node_id in (source, *(targets or ()))
        if node_id not in node_index
    }
    if missing:
        raise InvalidGraph(f"Linked nodes missing from node set: {sorted(missing)[:10]}")

    S = build_probability_matrix(links, node_index)
    G = d * S + (1.0 - d) / n

    dangling = [node_index[node_id] for node_id in nodes if is_dangling_node(links, node_id)]
    if dangling:
        G[dangling, :] = 1.0 / n

    log.debug("built %dx%d transition matrix (d=%s, dangling=%d)", n, n, d, len(dangling))

    matrix = AdjacencyMatrix(node_index, G)
    validate_row_stochastic(matrix)
    return matrix


def validate_row_stochastic(matrix: AdjacencyMatrix, tol: float = ROW_SUM_TOLERANCE) -> None:
    """Raise InvalidGraph unless every row of the matrix is a probability distribution."""
    G = matrix.probabilities
    n = len(matrix)

    if G.shape != (n, n):
        raise InvalidGraph(f"Transition matrix shape {G.shape} does not match {n} nodes")
    if n == 0:
        raise InvalidGraph("Transition matrix has no rows")
    if not np.all(np.isfinite(G)):
        raise InvalidGraph("Transition matrix holds non-finite probabilities")
    if np.any(G < 0.0):
        raise InvalidGraph("Transition matrix holds negative probabilities")

    row_sums = G.sum(axis=1)
    bad_rows = np.flatnonzero(np.abs(row_sums - 1.0) > tol)
    if bad_rows.size:
        first = matrix.nodes[int(bad_rows[0])]
        raise InvalidGraph(
            f"{bad_rows.size} transition rows do not sum to 1 "
            f"(node {first}: {row_sums[bad_rows[0]]:.12f})"
        )
