import pytest

from calmeval.utils import results_path_for, task_id_generator, validate_endpoint_url


class TestEndpointValidation:
    """Tests for evaluator endpoint validation."""

    @pytest.mark.parametrize(
        argnames="url",
        argvalues=[
            "http://api.mathjs.org/v4/",
            "https://api.mathjs.org/v4/",
            "http://127.0.0.1:8080/v4/",
        ],
    )
    def test_accepts_absolute_http_urls(self, url: str) -> None:
        assert validate_endpoint_url(url) == url

    @pytest.mark.parametrize(
        argnames="url",
        argvalues=[
            "api.mathjs.org/v4/",
            "ftp://api.mathjs.org/v4/",
            "http://",
            "",
        ],
    )
    def test_rejects_invalid_urls(self, url: str) -> None:
        with pytest.raises(ValueError):
            validate_endpoint_url(url)


class TestResultsPath:
    """Tests for deriving the default output file."""

    @pytest.mark.parametrize(
        argnames="input_file,expected",
        argvalues=[
            ("expressions.txt", "expressions_results.txt"),
            ("data/batch.in", "data/batch_results.in"),
            ("data.v2/expressions", "data.v2/expressions_results.txt"),
            ("expressions", "expressions_results.txt"),
            ("data/.hidden", "data/.hidden_results.txt"),
        ],
    )
    def test_results_path_for(self, input_file: str, expected: str) -> None:
        assert results_path_for(input_file) == expected


class TestTaskIDGenerator:
    """Tests for task ID generator."""

    def test_generator_produces_sequential_ids(self) -> None:
        """Test that generator produces sequential integers starting from 0."""
        gen = task_id_generator()

        assert next(gen) == 0
        assert next(gen) == 1
        assert next(gen) == 2

    def test_generator_continues_indefinitely(self) -> None:
        """Test that generator can produce many IDs."""
        gen = task_id_generator()

        ids = [next(gen) for _ in range(100)]

        assert ids == list(range(100))
