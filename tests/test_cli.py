import io

import pytest

from conftest import FakeEvaluator

from calmeval.__main__ import build_parser, config_from_args, evaluator_from_args, main, run
from calmeval.core.models import PipelineConfig, RateLimitPolicy
from calmeval.evaluators import MATHJS_API_URL, MathJsEvaluator


class TestArguments:
    """Tests for command-line parsing."""

    def test_defaults_match_pipeline_config(self) -> None:
        args = build_parser().parse_args([])

        config = config_from_args(args)

        assert config == PipelineConfig()
        assert args.url == MATHJS_API_URL
        assert args.input is None and args.output is None

    def test_overrides(self) -> None:
        args = build_parser().parse_args(
            ["--quota", "2", "--peak-throughput", "4", "--policy", "drop", "--max-retries", "0"]
        )

        config = config_from_args(args)

        assert config.external_quota_per_second == 2
        assert config.pool_size == 2
        assert config.rate_limit_policy is RateLimitPolicy.DROP
        assert config.max_retries_on_rate_limit == 0

    def test_evaluator_from_args(self) -> None:
        args = build_parser().parse_args(["--precision", "4", "--url", "http://localhost:8080/v4/"])

        evaluator = evaluator_from_args(args)

        assert isinstance(evaluator, MathJsEvaluator)
        assert evaluator.precision == 4
        assert evaluator.request_url == "http://localhost:8080/v4/"

    def test_unknown_policy_is_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--policy", "hold"])


@pytest.mark.asyncio
async def test_run_prints_results_until_terminator() -> None:
    source = io.StringIO("1+1\n\n2+2\nend\n3+3\n")
    out = io.StringIO()
    evaluator = FakeEvaluator(results={"1+1": "2", "2+2": "4"})

    code = await run(evaluator, PipelineConfig(), source, out, show_progress=False)

    assert code == 0
    assert out.getvalue().splitlines() == ["1+1 => 2", "2+2 => 4"]
    assert evaluator.called_expressions == ["1+1", "2+2"]


@pytest.mark.asyncio
async def test_run_reports_failures_in_exit_code() -> None:
    source = io.StringIO("1+1\nfoo\nend\n")
    out = io.StringIO()
    evaluator = FakeEvaluator(statuses=[200, 400])
    config = PipelineConfig(desired_peak_throughput_per_second=1)

    code = await run(evaluator, config, source, out, show_progress=False)

    assert code == 1
    assert out.getvalue().splitlines() == [
        "1+1 => 1+1!",
        "foo => error: service_error: HTTP 400 Error: status 400",
    ]


def test_main_rejects_invalid_configuration() -> None:
    assert main(["--quota", "0.5"]) == 2


def test_main_reads_and_writes_files(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = tmp_path / "in.txt"
    source.write_text("7 * 6\nend\n")
    target = tmp_path / "out.txt"
    monkeypatch.setattr(
        "calmeval.__main__.evaluator_from_args", lambda args: FakeEvaluator({"7 * 6": "42"})
    )

    code = main(["-i", str(source), "-o", str(target), "--no-progress"])

    assert code == 0
    assert target.read_text() == "7 * 6 => 42\n"


def test_main_reports_missing_input_file(tmp_path) -> None:
    assert main(["-i", str(tmp_path / "nope.txt"), "--no-progress"]) == 2


def test_main_reports_unwritable_output_file(tmp_path) -> None:
    source = tmp_path / "in.txt"
    source.write_text("1 + 1\nend\n")

    code = main(["-i", str(source), "-o", str(tmp_path / "missing" / "out.txt"), "--no-progress"])

    assert code == 2
