#!/usr/bin/env python3
"""
Basic usage example for chatter.

This script demonstrates nucleus sampling on a hand-made distribution and
a short chat with a small pretrained model.
"""

import sys
from pathlib import Path

# Add the parent directory to the path so we can import chatter
sys.path.append(str(Path(__file__).parent.parent))

import torch
from chatter.inference import (
    ChatSession,
    GenerationConfig,
    GenerationResult,
    NucleusSampler,
    SamplingConfig,
)
from chatter.model import load_pretrained


def main():
    print("chatter Basic Usage Example")
    print("=" * 40)

    # 1. Sample from a hand-made distribution
    print("\n1. Nucleus sampling...")
    sampler = NucleusSampler(SamplingConfig(top_p=0.7, temperature=1.0))
    probs = torch.tensor([0.5, 0.3, 0.2])

    token_ids, nucleus_probs = sampler.nucleus(probs)
    print(f"Nucleus token ids: {token_ids.tolist()}")
    print(f"Nucleus probabilities: {nucleus_probs.tolist()}")

    for draw in [0.5, 0.9]:
        print(f"  draw={draw} -> token {sampler(probs, rng_draw=draw)}")

    # 2. Load a small model
    print("\n2. Loading model...")
    model, tokenizer = load_pretrained("gpt2")
    print(f"Tokenizer vocabulary: {tokenizer.vocab_size:,} tokens")

    # 3. Chat
    print("\n3. Chatting...")
    session = ChatSession.from_collaborators(
        model,
        tokenizer,
        SamplingConfig(top_p=0.5, temperature=0.8),
        GenerationConfig(max_tokens=64, seed=42),
    )

    prompts = [
        "What is the capital of France?",
        "Name a color of the sky.",
    ]
    for prompt in prompts:
        session.submit(prompt)

    for prompt, outcome in zip(prompts, session.process_pending()):
        print(f"\nUser: {prompt}")
        if isinstance(outcome, GenerationResult):
            print(f"Assistant:{outcome.text.rstrip()}")
            print(f"  ({outcome.num_tokens} tokens, stopped on {outcome.stop_reason.value})")
        else:
            print(f"  Generation failed: {outcome.reason}")

    print(f"\nCurrent result: {session.current_result!r}")

    print("\n" + "=" * 40)
    print("Example completed successfully!")


if __name__ == "__main__":
    main()
