#!/usr/bin/env python3
"""
Chat script for chatter.

This script provides a command-line interface for chatting with a
Hugging Face causal language model through the chatter generation loop.
"""

import sys
from pathlib import Path

# Add the parent directory to the path so we can import chatter
sys.path.append(str(Path(__file__).parent.parent))

from chatter.cli import main


if __name__ == "__main__":
    main()
