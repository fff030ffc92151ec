from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from numbers import Integral
from typing import Dict, List, Optional

import numpy as np

from errors import InvalidGraph, InvalidParameter

log = logging.getLogger(__name__)

# Directed links, {from_node_id: [to_node_ids]}. Repeated destinations are kept.
Links = Dict[int, List[int]]

# Node id -> rank
Nodes = Dict[int, float]

INITIAL_RANK = 1.0


def _check_node_id(node_id) -> int:
    if isinstance(node_id, bool) or not isinstance(node_id, Integral):
        raise InvalidGraph(f"Node ids must be integers, got {node_id!r}")
    return int(node_id)


def build_nodes(links: Mapping[int, Sequence[int]]) -> Nodes:
    """
    Derive the node set from a link map.

    Every source key and every destination appears exactly once with the
    initial rank of 1.0. Nodes are returned in ascending id order.
    """
    if links is None or not isinstance(links, Mapping):
        raise InvalidGraph(f"Links must be a mapping, got {type(links).__name__}")

    node_ids = set()
    for source, targets in links.items():
        node_ids.add(_check_node_id(source))
        if targets is None or isinstance(targets, (str, bytes)) or not isinstance(targets, Sequence):
            raise InvalidGraph(f"Out-links of node {source} must be a sequence, got {targets!r}")
        for target in targets:
            node_ids.add(_check_node_id(target))

    return {node_id: INITIAL_RANK for node_id in sorted(node_ids)}


def is_dangling_node(links: Mapping[int, Sequence[int]], node_id: int) -> bool:
    """True if the node has no entry in links or an empty out-link list."""
    return not links.get(node_id)


def build_node_index(nodes: Mapping[int, object]) -> Dict[int, int]:
    """
    Build a deterministic ordering of nodes.

    Accepts Nodes or Links (only the keys of Links are indexed, so pass the
    output of build_nodes when destinations matter). Returns a mapping from
    node id to its index in the sorted node list.
    """
    ordered_nodes = sorted(nodes)
    return {node_id: idx for idx, node_id in enumerate(ordered_nodes)}


def generate_links(
    size: int,
    *,
    seed: Optional[int] = None,
    max_out_fraction: float = 0.1,
) -> Links:
    """
    Random link map over nodes 0..size-1, used to produce test input.

    Each node draws an out-degree in [0, max(1, size * max_out_fraction)) and
    links to that many distinct nodes (self links allowed).
    """
    if size < 0:
        raise InvalidParameter(f"Link size must be >= 0, got {size}")
    if not 0.0 <= max_out_fraction <= 1.0:
        raise InvalidParameter(f"max_out_fraction must be in [0, 1], got {max_out_fraction}")

    rng = np.random.default_rng(seed)
    degree_bound = max(1, int(size * max_out_fraction))

    links: Links = {}
    for node_id in range(size):
        out_size = int(rng.integers(0, degree_bound))
        link_ids = rng.permutation(size)
        links[node_id] = [int(target) for target in link_ids[:out_size]]

    log.debug("generated %d nodes, %d links", size, sum(len(t) for t in links.values()))
    return links
