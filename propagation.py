#!/usr/bin/env python3
"""Iterative rank propagation over a damped transition matrix."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from functools import reduce
from numbers import Integral, Real
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from errors import InvalidGraph, InvalidParameter
from graph_builder import Nodes, build_nodes
from markov import DEFAULT_DAMPING, AdjacencyMatrix, build_damped_matrix, validate_row_stochastic

log = logging.getLogger(__name__)

RankVector = Dict[int, float]

NORMS = ("l1", "l2")


@dataclass(frozen=True)
class PropagationConfig:
    """Rank propagation config"""
    damping: float = DEFAULT_DAMPING  # Pr(follow a link), 1 - d teleports
    max_iterations: int = 100
    epsilon: Optional[float] = 1e-6  # stop once distance < epsilon; None runs max_iterations
    norm: str = "l1"  # distance between successive rank vectors
    workers: int = 4  # number of node shards propagated concurrently

    def validate(self) -> "PropagationConfig":
        if isinstance(self.damping, bool) or not isinstance(self.damping, Real):
            raise InvalidParameter(f"Damping factor must be a number, got {self.damping!r}")
        if not 0.0 <= self.damping <= 1.0:
            raise InvalidParameter(f"Damping factor must be in [0, 1], got {self.damping}")
        if (
            isinstance(self.max_iterations, bool)
            or not isinstance(self.max_iterations, Integral)
            or self.max_iterations < 1
        ):
            raise InvalidParameter(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.epsilon is not None and (
            isinstance(self.epsilon, bool) or not isinstance(self.epsilon, Real) or not self.epsilon >= 0
        ):
            raise InvalidParameter(f"epsilon must be >= 0, got {self.epsilon}")
        if self.norm not in NORMS:
            raise InvalidParameter(f"norm must be one of {NORMS}, got {self.norm!r}")
        if isinstance(self.workers, bool) or not isinstance(self.workers, Integral) or self.workers < 1:
            raise InvalidParameter(f"workers must be >= 1, got {self.workers}")
        return self


@dataclass
class ConvergenceStats:
    """How the propagation stopped"""
    iterations: int
    final_diff: float
    converged: bool


# Map / reduce ------------------------------------------

def shard_nodes(node_ids: Iterable[int], workers: int) -> List[Tuple[int, ...]]:
    """Split node ids into disjoint shards by id % workers. Empty shards are dropped."""
    if workers < 1:
        raise InvalidParameter(f"workers must be >= 1, got {workers}")
    shards: List[List[int]] = [[] for _ in range(workers)]
    for node_id in node_ids:
        shards[node_id % workers].append(node_id)
    return [tuple(shard) for shard in shards if shard]


def propagate_shard(
    shard: Sequence[int],
    ranks: Mapping[int, float],
    matrix: AdjacencyMatrix,
) -> np.ndarray:
    """
    Map stage: the rank every destination receives from the sources in one shard.

    Returns a vector over all destinations (matrix order) holding
    sum(G[i][j] * r_i for i in shard). Inputs are only read.
    """
    rows = [matrix.node_index[node_id] for node_id in shard]
    weights = np.fromiter((ranks[node_id] for node_id in shard), dtype=float, count=len(shard))
    return weights @ matrix.probabilities[rows]


def reduce_partials(partials: Iterable[np.ndarray], matrix: AdjacencyMatrix) -> RankVector:
    """Reduce stage: sum shard partials by destination into a fresh rank vector."""
    total = reduce(np.add, partials, np.zeros(len(matrix), dtype=float))
    return {node_id: float(total[idx]) for idx, node_id in enumerate(matrix.nodes)}


def check_ranks(ranks: Mapping[int, float], matrix: AdjacencyMatrix) -> None:
    """Every ranked node needs a matrix row and every row needs a rank."""
    missing = [node_id for node_id in ranks if node_id not in matrix]
    if missing:
        raise InvalidGraph(f"No transition row for nodes {sorted(missing)[:10]}")
    if len(ranks) != len(matrix):
        unranked = [node_id for node_id in matrix.nodes if node_id not in ranks]
        raise InvalidGraph(f"No rank for nodes {unranked[:10]}")


def propagate_once(
    ranks: Mapping[int, float],
    matrix: AdjacencyMatrix,
    workers: int = 1,
    executor: Optional[Executor] = None,
) -> RankVector:
    """
    One redistribution step, next = G^T . ranks.

    Nodes are split into shards, each shard's contribution is computed
    independently (on the executor when one is given) and the partials are
    summed in shard order once all of them are done.
    """
    validate_row_stochastic(matrix)
    check_ranks(ranks, matrix)
    shards = shard_nodes(matrix.nodes, workers)

    if executor is None:
        partials = [propagate_shard(shard, ranks, matrix) for shard in shards]
    else:
        futures = [executor.submit(propagate_shard, shard, ranks, matrix) for shard in shards]
        partials = [future.result() for future in futures]

    return reduce_partials(partials, matrix)


def rank_distance(previous: Mapping[int, float], current: Mapping[int, float], norm: str = "l1") -> float:
    """L1 or L2 distance between two rank vectors over the same nodes."""
    if norm not in NORMS:
        raise InvalidParameter(f"norm must be one of {NORMS}, got {norm!r}")
    diff = np.fromiter((current[node_id] - previous[node_id] for node_id in current), dtype=float)
    return float(np.linalg.norm(diff, ord=1 if norm == "l1" else 2))


# Engine ------------------------------------------

class RankSnapshots:
    """Lazy, finite sequence of per-iteration rank vectors. Each iter() starts over."""

    def __init__(self, engine: "RankPropagation", initial: Optional[Mapping[int, float]] = None):
        self._engine = engine
        self._initial = initial

    def __iter__(self) -> Iterator[RankVector]:
        return self._engine._iterate(self._initial)


class RankPropagation:
    """Power iteration of a rank vector through a fixed transition matrix."""

    ITERATING = "iterating"
    STOPPED = "stopped"

    def __init__(self, matrix: AdjacencyMatrix, config: Optional[PropagationConfig] = None):
        self.config = (config or PropagationConfig()).validate()
        validate_row_stochastic(matrix)
        self.matrix = matrix
        self.state = self.STOPPED
        self.stats: Optional[ConvergenceStats] = None

    def initial_ranks(self) -> RankVector:
        return {node_id: 1.0 for node_id in self.matrix.nodes}

    def snapshots(self, initial: Optional[Mapping[int, float]] = None) -> RankSnapshots:
        return RankSnapshots(self, initial)

    def _iterate(self, initial: Optional[Mapping[int, float]]) -> Iterator[RankVector]:
        config = self.config
        ranks: RankVector = dict(initial) if initial is not None else self.initial_ranks()
        check_ranks(ranks, self.matrix)

        if self.state == self.ITERATING:
            raise RuntimeError("Rank propagation is already iterating; close the open snapshot iterator first")

        workers = min(config.workers, len(self.matrix))
        executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        self.state = self.ITERATING
        self.stats = None
        diff = float("inf")
        iteration = 0

        try:
            for iteration in range(1, config.max_iterations + 1):
                next_ranks = propagate_once(ranks, self.matrix, workers, executor)
                diff = rank_distance(ranks, next_ranks, config.norm)
                ranks = next_ranks
                log.debug("iteration %d: %s diff = %.3e", iteration, config.norm, diff)

                if config.epsilon is not None and diff < config.epsilon:
                    self.stats = ConvergenceStats(iteration, diff, True)
                    log.info("converged after %d iterations (%s diff: %.2e)", iteration, config.norm, diff)
                    yield ranks
                    return

                yield ranks

            self.stats = ConvergenceStats(iteration, diff, False)
            if config.epsilon is not None:
                log.warning(
                    "did not converge after %d iterations (%s diff: %.2e)",
                    iteration, config.norm, diff,
                )
        finally:
            self.state = self.STOPPED
            if executor is not None:
                executor.shutdown(wait=True)

    def run(self, initial: Optional[Mapping[int, float]] = None) -> Tuple[RankVector, ConvergenceStats]:
        """Propagate until convergence or the iteration bound. Returns (ranks, stats)."""
        for ranks in self.snapshots(initial):
            pass
        return ranks, self.stats


def compute_pagerank(
    links: Mapping[int, Sequence[int]],
    config: Optional[PropagationConfig] = None,
) -> Tuple[RankVector, ConvergenceStats]:
    """Build the node set and transition matrix for links, then run propagation."""
    config = (config or PropagationConfig()).validate()
    nodes: Nodes = build_nodes(links)
    log.info("running PageRank on %d nodes (d=%s, workers=%d)", len(nodes), config.damping, config.workers)

    matrix = build_damped_matrix(links, nodes, config.damping)
    return RankPropagation(matrix, config).run()
