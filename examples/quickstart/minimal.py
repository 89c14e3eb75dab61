"""
Example: Minimal Quickstart
Description: Evaluate a handful of expressions in memory
Use case: Learning the basics, quick testing
Evaluator: math.js (set MATHJS_URL in .env to point at a self-hosted instance)

This example demonstrates:
- Basic evaluator setup
- In-memory bulk evaluation
- Accessing results and failures
"""

import asyncio
import os

from dotenv import load_dotenv

from calmeval import PipelineConfig, evaluate_expressions
from calmeval.evaluators import MATHJS_API_URL, MathJsEvaluator

load_dotenv()

# The public math.js API asks clients to stay well below its fair-use limit
QUOTA_PER_SECOND = 10


async def main() -> None:
    # 1. Configure the evaluator
    evaluator = MathJsEvaluator(request_url=os.getenv("MATHJS_URL", MATHJS_API_URL), precision=14)

    # 2. Expressions, exactly as a user would type them
    expressions = [
        "2 * 4 * 4",
        "5 / (7 - 5)",
        "sqrt(5^2 - 4^2)",
        "sqrt(-3^2 - 4^2)",
        "this is not math",
    ]

    # 3. Evaluate with admission control
    results = await evaluate_expressions(
        evaluator=evaluator,
        expressions=expressions,
        config=PipelineConfig(external_quota_per_second=QUOTA_PER_SECOND),
    )

    # 4. Access your results
    for result in results.successes:
        print(f"{result.expression} => {result.result}")
    for failure in results.failures:
        print(f"{failure.expression} failed ({failure.error_kind}): {failure.error}")


if __name__ == "__main__":
    asyncio.run(main())
