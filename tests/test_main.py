import os

import pytest

from errors import InvalidParameter
from main import (
    SAMPLE_LINKS,
    cli,
    config_from_env,
    load_env_from_file,
    main,
    parse_args,
    top_ranked,
)
from propagation import PropagationConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Run every test in an empty directory without PAGERANK_* variables."""
    environ = {key: value for key, value in os.environ.items() if not key.startswith("PAGERANK_")}
    monkeypatch.setattr(os, "environ", environ)
    monkeypatch.chdir(tmp_path)


def test_config_from_env_defaults():
    assert config_from_env({}) == PropagationConfig()


def test_config_from_env_overrides():
    config = config_from_env(
        {
            "PAGERANK_DAMPING": "0.5",
            "PAGERANK_MAX_ITERATIONS": "30",
            "PAGERANK_EPSILON": "none",
            "PAGERANK_NORM": "L2",
            "PAGERANK_WORKERS": " 8 ",
        }
    )

    assert config == PropagationConfig(damping=0.5, max_iterations=30, epsilon=None, norm="l2", workers=8)


def test_config_from_env_bad_value():
    with pytest.raises(InvalidParameter, match="PAGERANK_WORKERS"):
        config_from_env({"PAGERANK_WORKERS": "many"})


def test_load_env_from_file_does_not_override(monkeypatch, tmp_path):
    monkeypatch.setenv("PAGERANK_NORM", "l1")
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# tuning\nPAGERANK_DAMPING='0.7'\nPAGERANK_NORM=l2\nnot a pair\nOTHER_SETTING=1\n",
        encoding="utf-8",
    )

    loaded = load_env_from_file(str(env_file))

    assert loaded == {"PAGERANK_DAMPING": "0.7"}
    assert os.environ["PAGERANK_DAMPING"] == "0.7"
    assert os.environ["PAGERANK_NORM"] == "l1"
    assert "OTHER_SETTING" not in os.environ


def test_load_env_from_missing_file(tmp_path):
    assert load_env_from_file(str(tmp_path / "absent.env")) == {}


def test_parse_args_uses_env_defaults(monkeypatch):
    monkeypatch.setenv("PAGERANK_DAMPING", "0.6")

    args = parse_args(["--workers", "2"])

    assert args.damping == 0.6
    assert args.workers == 2
    assert args.size is None


def test_top_ranked_orders_by_rank_then_id():
    ranks = {3: 0.5, 1: 0.9, 2: 0.5}

    assert top_ranked(ranks, 2) == [(1, 0.9), (2, 0.5)]


def test_main_prints_steps_and_summary(capsys):
    config = PropagationConfig(max_iterations=3, epsilon=None, workers=2)

    ranks = main(SAMPLE_LINKS, config, top_k=3, show_links=True, show_steps=True)

    out = capsys.readouterr().out
    assert "key: 1 links: [2, 3, 4]" in out
    assert "===== step 3 =====" in out
    assert "===== step 4 =====" not in out
    assert "TOP 3 NODES" in out
    assert sum(ranks.values()) == pytest.approx(7.0)


def test_cli_sample_graph(capsys):
    assert cli(["--top-k", "2", "--max-iterations", "200"]) == 0

    out = capsys.readouterr().out
    assert "Nodes: 7" in out
    assert "Converged: Yes" in out


def test_cli_random_graph(capsys):
    assert cli(["--size", "30", "--seed", "4", "--no-epsilon", "--max-iterations", "5"]) == 0

    out = capsys.readouterr().out
    assert "Nodes: 30" in out
    assert "Iterations: 5" in out


def test_cli_reads_dotenv(tmp_path, capsys):
    (tmp_path / ".env").write_text("PAGERANK_MAX_ITERATIONS=2\nPAGERANK_EPSILON=none\n", encoding="utf-8")

    assert cli([]) == 0

    assert "Iterations: 2" in capsys.readouterr().out


@pytest.mark.parametrize(
    "argv",
    [["--damping", "1.5"], ["--workers", "0"], ["--size", "0"], ["--max-iterations", "0"]],
)
def test_cli_reports_errors(argv, capsys):
    assert cli(argv) == 2

    assert capsys.readouterr().err.startswith("error: ")
