#!/usr/bin/env python3
"""Entry point for the SVG/ASCII refinement loop.

Usage:
    # Generate an SVG in three refinement steps
    python main.py generate "A lighthouse on a cliff at dusk"

    # ASCII art, only the last step sent back as history
    python main.py generate "A cat" --format ascii --history last

    # With options
    python main.py generate "prompt" --provider anthropic --model claude-sonnet-4-5 \
        --max-steps 5 --image reference.png
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import config


def format_step_line(step) -> str:
    """One status line for a completed step."""
    rendered = sum(1 for a in step.artifacts if a.preview is not None)
    line = (
        f"[Step {step.index + 1}] {step.status.value}: "
        f"{len(step.artifacts)} artifact(s), {rendered} rendered"
    )
    if step.usage:
        line += f", {step.usage.input_tokens} in / {step.usage.output_tokens} out tokens"
    if step.cost and step.cost.total:
        line += f", ${step.cost.total:.4f}"
    return line


def run_generate(args: argparse.Namespace) -> int:
    """Run the generation loop from CLI."""
    from sketchloop.feedback import load_image
    from sketchloop.persistence import LocalGateway
    from sketchloop.pipeline import RefinementOrchestrator
    from sketchloop.schemas import (
        ContinuationPolicy,
        Generation,
        HistoryPolicy,
        OutputFormat,
        RunState,
        Step,
    )

    output_format = OutputFormat(args.format)
    if output_format == OutputFormat.VECTOR:
        width = args.width or config.SVG_WIDTH
        height = args.height or config.SVG_HEIGHT
    else:
        width = args.width or config.ASCII_WIDTH
        height = args.height or config.ASCII_HEIGHT

    generation = Generation(
        prompt=args.prompt,
        format=output_format,
        width=width,
        height=height,
        provider=args.provider,
        model=args.model,
        endpoint=args.endpoint,
        max_steps=args.max_steps,
        history_policy=HistoryPolicy(args.history),
        continuation_policy=(
            ContinuationPolicy.ABORT if args.abort_on_render_failure else ContinuationPolicy.CONTINUE
        ),
        input_price=args.input_price,
        output_price=args.output_price,
    )
    images = [load_image(image) for image in args.image]

    print(f"\n{'='*60}")
    print("SVG/ASCII Refinement Loop")
    print(f"{'='*60}\n")
    print(f"Prompt: {generation.prompt}")
    print(f"Format: {generation.format.value} ({generation.width}x{generation.height})")
    print(f"Model: {generation.provider}:{generation.model}")
    print(f"Max steps: {generation.max_steps}")
    print()

    last_length = {"chars": 0}

    def on_progress(state: RunState):
        """Print a dot every 500 streamed characters."""
        step = state.current_step
        if step is None:
            return
        if len(step.raw_output) - last_length["chars"] >= 500:
            print(".", end="", flush=True)
            last_length["chars"] = len(step.raw_output)

    def on_step(step: Step):
        """Callback to print progress."""
        last_length["chars"] = 0
        print()
        print(format_step_line(step))
        for artifact in step.artifacts:
            if artifact.render_error:
                print(f"  Render error: {artifact.render_error.message}")
            if artifact.blob_keys:
                keys = ", ".join(artifact.blob_keys.values())
                print(f"  Saved: {keys}")

    orchestrator = RefinementOrchestrator(gateway=LocalGateway(args.output_dir))
    orchestrator.channel.add_listener(on_progress)

    try:
        result = asyncio.run(orchestrator.run(generation, reference_images=images, on_step=on_step))
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 130

    print(f"\n{'='*60}")
    print("COMPLETE" if result.success else "FAILED")
    print(f"{'='*60}")
    print(f"Generation: {result.generation_id}")
    print(f"Steps: {len(result.steps)}")
    print(f"Stop reason: {result.stop_reason.replace('_', ' ')}")
    if result.error:
        print(f"Error: {result.error}")
    print(f"Output: {args.output_dir / result.generation_id}")
    print()
    return 0 if result.success else 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="SVG/ASCII Refinement Loop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    gen_parser = subparsers.add_parser("generate", help="Generate artwork from CLI")
    gen_parser.add_argument(
        "prompt",
        type=str,
        help="What to draw",
    )
    gen_parser.add_argument(
        "--format", "-f",
        choices=["svg", "ascii"],
        default="svg",
        help="Output format (default: svg)",
    )
    gen_parser.add_argument(
        "--width", "-W",
        type=int,
        default=None,
        help=f"Width in pixels (svg, default {config.SVG_WIDTH}) or characters (ascii, default {config.ASCII_WIDTH})",
    )
    gen_parser.add_argument(
        "--height", "-H",
        type=int,
        default=None,
        help=f"Height in pixels (svg, default {config.SVG_HEIGHT}) or lines (ascii, default {config.ASCII_HEIGHT})",
    )
    gen_parser.add_argument(
        "--provider", "-p",
        type=str,
        default=config.LLM_PROVIDER,
        help=f"LLM provider (default: {config.LLM_PROVIDER})",
    )
    gen_parser.add_argument(
        "--model", "-m",
        type=str,
        default=config.LLM_MODEL,
        help=f"Model name (default: {config.LLM_MODEL})",
    )
    gen_parser.add_argument(
        "--endpoint", "-e",
        type=str,
        default=None,
        help="Custom API base URL",
    )
    gen_parser.add_argument(
        "--max-steps", "-s",
        type=int,
        default=config.MAX_STEPS,
        help=f"Maximum steps (default: {config.MAX_STEPS})",
    )
    gen_parser.add_argument(
        "--history",
        choices=["full", "last"],
        default="full",
        help="Send all previous steps or only the last one (default: full)",
    )
    gen_parser.add_argument(
        "--abort-on-render-failure",
        action="store_true",
        help="Stop early when nothing in a step renders",
    )
    gen_parser.add_argument(
        "--image", "-i",
        type=str,
        action="append",
        default=[],
        help="Reference image path or URL (repeatable)",
    )
    gen_parser.add_argument(
        "--input-price",
        type=float,
        default=0.0,
        help="Price per million input tokens",
    )
    gen_parser.add_argument(
        "--output-price",
        type=float,
        default=0.0,
        help="Price per million output tokens",
    )
    gen_parser.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=config.OUTPUTS_DIR,
        help=f"Output directory (default: {config.OUTPUTS_DIR})",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.command == "generate":
        sys.exit(run_generate(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
