#!/usr/bin/env python3
"""
Evaluate the complexity classifier against labelled messages.

Runs every sample through the live classifier endpoint and prints
accuracy, off-by-one accuracy and a confusion matrix.

Usage:
    python scripts/evaluate_classifier.py [--data samples.json] [--model deepseek-v3-250324]

Data format (JSON list):
    [{"message": "...", "context": "... (optional)", "hasTools": false, "level": "medium"}]

Without --data a small built-in set is used.  Needs CLASSIFIER_* or
LLM_BASE_URL / LLM_API_KEY in the environment (or .env).
"""

import argparse
import asyncio
import json
import pathlib
import sys
from collections import Counter

_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from botrouter.classifier import ClassifierConfig, ComplexityClassifier, LLMEndpoint  # noqa: E402
from botrouter.config import load_settings  # noqa: E402
from botrouter.models import ComplexityLevel  # noqa: E402

BUILTIN_SAMPLES = [
    {"message": "Hey", "level": "super_easy"},
    {"message": "thanks!", "level": "super_easy"},
    {"message": "What is 2+2?", "level": "easy"},
    {"message": "Remind me to call mom at 5pm", "level": "easy"},
    {"message": "Is the deploy finished?", "level": "easy"},
    {"message": "Write a sort function in Python", "level": "medium"},
    {"message": "Send an email to Bob about Friday's meeting", "level": "medium"},
    {"message": "Fix the off-by-one bug in this loop", "level": "medium"},
    {"message": "Refactor the auth module to use dependency injection", "level": "hard"},
    {"message": "Debug this segfault in the image decoder", "level": "hard"},
    {"message": "Design a distributed rate limiter for 10k nodes", "level": "super_hard"},
    {"message": "Prove that the algorithm terminates for all inputs", "level": "super_hard"},
    {"message": "Try now?", "context": "Design a system for multi-region failover", "level": "super_hard"},
    {"message": "Yes", "context": "Write a function that parses ISO dates", "level": "medium"},
    {"message": "Good thanks", "context": "Hey how are you", "level": "super_easy"},
]

LEVELS = [level.value for level in ComplexityLevel]


async def evaluate(classifier: ComplexityClassifier, samples: list[dict]) -> list[tuple[str, str]]:
    pairs = []
    for i, sample in enumerate(samples, 1):
        result = await classifier.classify(
            sample["message"], sample.get("context"), sample.get("hasTools", False)
        )
        expected = sample["level"]
        got = result.level.value
        mark = "ok " if got == expected else "MISS"
        print(f"[{i:3d}/{len(samples)}] {mark} expected={expected:10s} got={got:10s} "
              f"{result.latency_ms:6.0f}ms  {sample['message'][:50]!r}")
        pairs.append((expected, got))
    await classifier.aclose()
    return pairs


def print_report(pairs: list[tuple[str, str]]) -> None:
    total = len(pairs)
    exact = sum(1 for e, g in pairs if e == g)
    rank = {label: i for i, label in enumerate(LEVELS)}
    adjacent = sum(1 for e, g in pairs if abs(rank[e] - rank[g]) <= 1)

    print(f"\n{'='*60}")
    print("Complexity Classifier")
    print(f"{'='*60}")
    print(f"  Accuracy          : {exact / total:.4f}  ({exact}/{total})")
    print(f"  Within one level  : {adjacent / total:.4f}  ({adjacent}/{total})")

    counts = Counter(pairs)
    print("\nConfusion matrix (rows = expected, cols = predicted):")
    print(" " * 12 + "".join(f"{label[:10]:>11s}" for label in LEVELS))
    for expected in LEVELS:
        row = "".join(f"{counts.get((expected, got), 0):11d}" for got in LEVELS)
        print(f"  {expected:10s}{row}")


def main() -> None:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Evaluate the complexity classifier.")
    parser.add_argument("--data", type=pathlib.Path, help="JSON file of labelled samples.")
    parser.add_argument("--model", default=settings.classifier_model)
    parser.add_argument("--vendor", default=settings.classifier_vendor)
    args = parser.parse_args()

    samples = json.loads(args.data.read_text()) if args.data else BUILTIN_SAMPLES
    unknown = {s["level"] for s in samples} - set(LEVELS)
    if unknown:
        print(f"Error: unknown levels in data: {sorted(unknown)}", file=sys.stderr)
        sys.exit(1)

    if not (settings.classifier_api_key or settings.llm_api_key):
        print("Error: no CLASSIFIER_API_KEY or LLM_API_KEY set.", file=sys.stderr)
        sys.exit(1)

    classifier = ComplexityClassifier(
        ClassifierConfig(
            model=args.model,
            vendor=args.vendor,
            base_url=settings.classifier_base_url,
            api_key=settings.classifier_api_key,
            timeout_ms=settings.classifier_timeout_ms,
        ),
        LLMEndpoint(base_url=settings.llm_base_url, api_key=settings.llm_api_key),
    )
    print(f"Evaluating {len(samples)} samples with {args.vendor}/{args.model} ...\n")
    pairs = asyncio.run(evaluate(classifier, samples))
    print_report(pairs)


if __name__ == "__main__":
    main()
