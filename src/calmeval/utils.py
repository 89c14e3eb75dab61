from __future__ import annotations

import os
from typing import Generator
from urllib.parse import urlparse


def task_id_generator() -> Generator[int, None, None]:
    """
    Generate integers 0, 1, 2, and so on.

    Returns:
        Generator[int, None, None]: A generator that yields integers 0, 1, 2, and so on.
    """
    task_id = 0
    while True:
        yield task_id
        task_id += 1


def validate_endpoint_url(url: str) -> str:
    """
    Check that an evaluator endpoint is an absolute http(s) URL.

    Args:
        url (str): The endpoint to validate

    Returns:
        str: The URL unchanged

    Raises:
        ValueError: If the scheme is not http/https or the host is missing
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Evaluator URL must be an absolute http(s) URL: {url}")
    return url


def results_path_for(input_file: str) -> str:
    """
    Derive the default output path for an expressions file.

    >>> results_path_for("data/expressions.txt")
    'data/expressions_results.txt'
    >>> results_path_for("data/.hidden")
    'data/.hidden_results.txt'
    """
    directory, name = os.path.split(input_file)
    stem, ext = os.path.splitext(name)
    return os.path.join(directory, f"{stem}_results{ext or '.txt'}")
