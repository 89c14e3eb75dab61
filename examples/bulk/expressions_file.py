"""
Example: Bulk File Evaluation
Description: Evaluate a file of expressions, writing results line by line
Use case: Large batches that should not be held in memory
Evaluator: math.js

This example demonstrates:
- Streaming a file through the pipeline
- Drop policy for strict latency budgets
- Reading the summary statistics
"""

import asyncio
import os
import tempfile

from dotenv import load_dotenv

from calmeval import PipelineConfig, RateLimitPolicy, evaluate_expressions_from_file
from calmeval.evaluators import MATHJS_API_URL, MathJsEvaluator

load_dotenv()


def write_sample_file(directory: str) -> str:
    path = os.path.join(directory, "expressions.txt")
    with open(path, "w", encoding="utf-8") as f:
        for i in range(1, 101):
            f.write(f"{i}^2 + {i}\n")
        f.write("end\n")
    return path


async def main() -> None:
    evaluator = MathJsEvaluator(request_url=os.getenv("MATHJS_URL", MATHJS_API_URL))

    with tempfile.TemporaryDirectory() as directory:
        input_file = write_sample_file(directory)

        stats = await evaluate_expressions_from_file(
            evaluator=evaluator,
            expressions_file=input_file,
            config=PipelineConfig(
                external_quota_per_second=20,
                desired_peak_throughput_per_second=20,
                # Give up on an expression rather than wait more than ~1s for quota
                rate_limit_policy=RateLimitPolicy.DROP,
            ),
        )

        with open(os.path.join(directory, "expressions_results.txt"), encoding="utf-8") as f:
            print("".join(f.readlines()[:5]), end="")

    print(f"{stats.successful}/{stats.total_requests} evaluated in {stats.duration_seconds:.1f}s")
    print(f"{stats.rate_limit_rejections} rejected by the rate limiter")


if __name__ == "__main__":
    asyncio.run(main())
