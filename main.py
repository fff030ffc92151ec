from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Dict, List, Mapping, Optional, Sequence

from errors import InvalidParameter, PageRankError
from graph_builder import Links, build_nodes, generate_links
from markov import build_damped_matrix
from propagation import ConvergenceStats, PropagationConfig, RankPropagation, RankVector

log = logging.getLogger(__name__)

# Six node sample graph, {from_node_id: [to_node_ids]}
SAMPLE_LINKS: Links = {
    1: [2, 3, 4],
    2: [1, 4, 5],
    3: [1, 4],
    4: [2, 3],
    5: [2, 3, 6],
    6: [1, 4, 7],
}

ENV_PREFIX = "PAGERANK_"


def load_env_from_file(path: str = ".env", prefix: str = ENV_PREFIX) -> Dict[str, str]:
    """
    Copy prefix-matching KEY=VALUE lines from a dotenv file into os.environ.

    Variables already set in the environment win. Returns what was loaded.
    """
    loaded: Dict[str, str] = {}
    if not os.path.isfile(path):
        return loaded
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                key, sep, val = line.strip().partition("=")
                key = key.strip()
                if not sep or not key.startswith(prefix):
                    continue
                if key in os.environ:
                    continue
                loaded[key] = os.environ[key] = val.strip().strip("\"'")
    except OSError as exc:
        log.warning("could not read %s: %s", path, exc)
    return loaded


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> PropagationConfig:
    """PropagationConfig defaults overridden by PAGERANK_* variables."""
    environ = os.environ if environ is None else environ
    defaults = PropagationConfig()

    def _get(name: str, cast, default):
        raw = environ.get(ENV_PREFIX + name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return cast(raw.strip())
        except ValueError as exc:
            raise InvalidParameter(f"{ENV_PREFIX}{name}={raw!r} is not valid: {exc}") from exc

    def _epsilon(raw: str) -> Optional[float]:
        return None if raw.lower() == "none" else float(raw)

    return PropagationConfig(
        damping=_get("DAMPING", float, defaults.damping),
        max_iterations=_get("MAX_ITERATIONS", int, defaults.max_iterations),
        epsilon=_get("EPSILON", _epsilon, defaults.epsilon),
        norm=_get("NORM", str.lower, defaults.norm),
        workers=_get("WORKERS", int, defaults.workers),
    )


def top_ranked(ranks: Mapping[int, float], top_k: int = 10) -> List[tuple]:
    """Highest ranked nodes first, ties broken by node id."""
    return sorted(ranks.items(), key=lambda item: (-item[1], item[0]))[:top_k]


class ResultsReporter:
    """Print results to console."""

    @staticmethod
    def print_links(links: Mapping[int, Sequence[int]]) -> None:
        for node_id in sorted(links):
            print(f"key: {node_id} links: {list(links[node_id])}")

    @staticmethod
    def print_ranks(ranks: Mapping[int, float]) -> None:
        for node_id in sorted(ranks):
            print(f"id: {node_id}, rank: {ranks[node_id]:.15f}")

    @staticmethod
    def print_step(step: int, ranks: Mapping[int, float]) -> None:
        print(f"\n===== step {step} =====")
        ResultsReporter.print_ranks(ranks)

    @staticmethod
    def print_summary(
        ranks: RankVector,
        stats: ConvergenceStats,
        top_k: int = 10,
    ) -> None:
        print("\n" + "=" * 60)
        print("PAGERANK")
        print("=" * 60)
        print(f"  Nodes: {len(ranks)}")
        print(f"  Total rank: {sum(ranks.values()):.6f}")
        print(f"  Iterations: {stats.iterations}")
        print(f"  Final diff: {stats.final_diff:.2e}")
        print(f"  Converged: {'Yes' if stats.converged else 'No'}")

        if not ranks:
            print("\nNo nodes to rank.")
            return

        print(f"\nTOP {min(top_k, len(ranks))} NODES")
        for position, (node_id, rank) in enumerate(top_ranked(ranks, top_k), 1):
            print(f"  {position:3d}. {node_id:>8} {rank:.6f}")


# Main driver
def main(
    links: Links,
    config: PropagationConfig,
    top_k: int = 10,
    show_links: bool = False,
    show_steps: bool = False,
) -> RankVector:
    if show_links:
        ResultsReporter.print_links(links)

    nodes = build_nodes(links)
    log.debug("ranking %d nodes from %d link lists", len(nodes), len(links))
    matrix = build_damped_matrix(links, nodes, config.damping)
    engine = RankPropagation(matrix, config)

    for step, ranks in enumerate(engine.snapshots(nodes), 1):
        if show_steps:
            ResultsReporter.print_step(step, ranks)

    ResultsReporter.print_summary(ranks, engine.stats, top_k=top_k)
    return ranks


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    defaults = config_from_env()

    parser = argparse.ArgumentParser(
        description="Rank the nodes of a directed graph with damped PageRank."
    )
    parser.add_argument(
        "--size",
        type=int,
        default=None,
        help="Generate a random graph with this many nodes (default: built-in sample graph).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for --size.",
    )
    parser.add_argument(
        "--damping",
        type=float,
        default=defaults.damping,
        help="Probability of following a link instead of teleporting (0-1).",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=defaults.max_iterations,
        help="Upper bound on propagation steps.",
    )
    parser.add_argument(
        "--epsilon",
        type=float,
        default=defaults.epsilon,
        help="Stop once successive rank vectors are closer than this.",
    )
    parser.add_argument(
        "--no-epsilon",
        action="store_true",
        help="Ignore epsilon and always run --max-iterations steps.",
    )
    parser.add_argument(
        "--norm",
        choices=["l1", "l2"],
        default=defaults.norm,
        help="Distance used for the convergence test.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=defaults.workers,
        help="Number of node shards propagated concurrently.",
    )
    parser.add_argument(
        "--top-k",
        type=int,
        default=10,
        help="How many nodes to list in the summary.",
    )
    parser.add_argument(
        "--show-links",
        action="store_true",
        help="Print the link map before ranking.",
    )
    parser.add_argument(
        "--show-steps",
        action="store_true",
        help="Print the rank vector after every step.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging.",
    )
    return parser.parse_args(argv)


def cli(argv: Optional[Sequence[str]] = None) -> int:
    # Load env vars (e.g., PAGERANK_DAMPING) from .env if present.
    load_env_from_file()

    try:
        args = parse_args(argv)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        config = PropagationConfig(
            damping=args.damping,
            max_iterations=args.max_iterations,
            epsilon=None if args.no_epsilon else args.epsilon,
            norm=args.norm,
            workers=args.workers,
        ).validate()

        if args.size is not None:
            links = generate_links(args.size, seed=args.seed)
        else:
            links = SAMPLE_LINKS

        main(
            links,
            config,
            top_k=args.top_k,
            show_links=args.show_links,
            show_steps=args.show_steps,
        )
    except PageRankError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(cli())
