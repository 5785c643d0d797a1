"""
Command-line chat interface for chatter.

Loads a Hugging Face causal LM, submits prompts to a chat session and prints
the published result of each run.
"""

import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

import torch
import wandb

from .config import create_configs_from_yaml, load_config
from .inference import ChatSession, GenerationResult, RunFailed
from .inference.errors import ChatterError
from .model import load_pretrained


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Chat with a language model using nucleus sampling')
    parser.add_argument(
        '--model',
        type=str,
        default='gpt2',
        help='Model name or path'
    )
    parser.add_argument(
        '--tokenizer',
        type=str,
        default=None,
        help='Tokenizer name or path (defaults to --model)'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to YAML configuration file'
    )
    parser.add_argument(
        '--prompt',
        type=str,
        default="Tell me about the ocean.",
        help='Prompt to send when not in interactive mode'
    )
    parser.add_argument(
        '--interactive',
        action='store_true',
        help='Interactive chat mode'
    )
    parser.add_argument(
        '--top-p',
        type=float,
        default=None,
        help='Top-p (nucleus) sampling parameter'
    )
    parser.add_argument(
        '--temperature',
        type=float,
        default=None,
        help='Sampling temperature'
    )
    parser.add_argument(
        '--presence-penalty',
        type=float,
        default=None,
        help='Penalty for tokens already emitted'
    )
    parser.add_argument(
        '--frequency-penalty',
        type=float,
        default=None,
        help='Penalty per emission of a token'
    )
    parser.add_argument(
        '--max-tokens',
        type=int,
        default=None,
        help='Maximum number of tokens to generate'
    )
    parser.add_argument(
        '--accumulate-counts',
        action='store_true',
        help='Scale the frequency penalty with the number of emissions'
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Random seed for reproducibility'
    )
    parser.add_argument(
        '--device',
        type=str,
        default='auto',
        help='Device to use (auto, cpu, cuda, mps)'
    )
    parser.add_argument(
        '--stream',
        action='store_true',
        help='Print tokens as they are generated'
    )
    parser.add_argument(
        '--wandb',
        action='store_true',
        help='Log run statistics to Weights & Biases'
    )
    parser.add_argument(
        '--wandb-project',
        type=str,
        default='chatter',
        help='Weights & Biases project name'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def resolve_device(name: str) -> torch.device:
    if name == 'auto':
        if torch.cuda.is_available():
            return torch.device('cuda')
        if hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
            return torch.device('mps')
        return torch.device('cpu')
    return torch.device(name)


def build_configs(args: argparse.Namespace):
    """Merge the YAML file (if any) with command-line overrides."""
    yaml_config = load_config(args.config) if args.config else {}
    sampling_config, generation_config = create_configs_from_yaml(yaml_config)

    sampling_overrides = {
        'top_p': args.top_p,
        'temperature': args.temperature,
        'presence_penalty': args.presence_penalty,
        'frequency_penalty': args.frequency_penalty,
    }
    sampling_config = dataclasses.replace(
        sampling_config,
        **{k: v for k, v in sampling_overrides.items() if v is not None}
    )

    generation_overrides = {
        'max_tokens': args.max_tokens,
        'seed': args.seed,
        'accumulate_counts': True if args.accumulate_counts else None,
    }
    generation_config = dataclasses.replace(
        generation_config,
        **{k: v for k, v in generation_overrides.items() if v is not None}
    )

    return sampling_config, generation_config


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        sampling_config, generation_config = build_configs(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(2)

    device = resolve_device(args.device)
    print(f"Using device: {device}")

    print(f"Loading model {args.model}...")
    try:
        model, tokenizer = load_pretrained(args.model, args.tokenizer, device=device)
        print("Model loaded successfully!")
    except (OSError, ValueError) as e:
        print(f"Error loading model: {e}")
        sys.exit(1)

    if args.wandb:
        wandb.init(
            project=args.wandb_project,
            config={
                "model": args.model,
                **sampling_config.to_dict(),
                **generation_config.to_dict(),
            },
        )

    def report(event, outcome):
        if isinstance(outcome, RunFailed):
            print(f"\n[generation failed: {outcome.reason}]")
            return
        if args.wandb:
            wandb.log({
                "num_tokens": outcome.num_tokens,
                "generation_time": outcome.generation_time,
                "tokens_per_second": outcome.tokens_per_second,
                "stop_reason": outcome.stop_reason.value,
            })

    try:
        session = ChatSession.from_collaborators(
            model,
            tokenizer,
            sampling_config,
            generation_config,
            on_result=report,
        )
    except ChatterError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"\nSampling Settings:")
    print(f"  Top-p: {sampling_config.top_p}")
    print(f"  Temperature: {sampling_config.temperature}")
    print(f"  Presence penalty: {sampling_config.presence_penalty}")
    print(f"  Frequency penalty: {sampling_config.frequency_penalty}")
    print(f"  Max tokens: {generation_config.max_tokens}")

    def chat_once(prompt: str):
        print(f"\n{generation_config.user_label}: {prompt}")
        print(f"{generation_config.assistant_label}:", end='', flush=True)

        def print_token(token_id, piece):
            print(piece, end='', flush=True)

        session.submit(prompt)
        outcome = session.process_next(on_token=print_token if args.stream else None)

        if isinstance(outcome, GenerationResult):
            if not args.stream:
                print(session.current_result, end='')
            print(f"\n[{outcome.num_tokens} tokens, {outcome.tokens_per_second:.1f} tokens/s]")

    try:
        if args.interactive:
            print("\nInteractive mode - type 'quit' to exit")
            while True:
                try:
                    prompt = input("\n> ").strip()
                    if prompt.lower() in ['quit', 'exit', 'q']:
                        break
                    if prompt:
                        chat_once(prompt)
                except KeyboardInterrupt:
                    print("\nExiting...")
                    break
        else:
            chat_once(args.prompt)
    finally:
        if args.wandb:
            wandb.finish()


if __name__ == "__main__":
    main()
