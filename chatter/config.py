"""
YAML configuration for chatter.

A configuration file has optional ``sampling`` and ``generation`` sections.
Keys that are left out fall back to the dataclass defaults.
"""

from typing import Any, Dict, Tuple

import yaml

from .inference.generator import GenerationConfig
from .inference.sampling import SamplingConfig


def load_config(config_path: str) -> dict:
    """Load configuration from YAML file."""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    return config or {}


def create_configs_from_yaml(yaml_config: Dict[str, Any]) -> Tuple[SamplingConfig, GenerationConfig]:
    """Create sampling and generation configs from YAML configuration."""
    sampling_dict = yaml_config.get('sampling') or {}
    sampling_config = SamplingConfig(
        top_p=sampling_dict.get('top_p', 0.5),
        temperature=sampling_dict.get('temperature', 1.0),
        presence_penalty=sampling_dict.get('presence_penalty', 0.3),
        frequency_penalty=sampling_dict.get('frequency_penalty', 0.3),
    )

    generation_dict = yaml_config.get('generation') or {}
    generation_config = GenerationConfig(
        max_tokens=generation_dict.get('max_tokens', 1024),
        stop_sequence=generation_dict.get('stop_sequence', "\n\n"),
        eos_token_id=generation_dict.get('eos_token_id', 0),
        user_label=generation_dict.get('user_label', "User"),
        assistant_label=generation_dict.get('assistant_label', "Assistant"),
        accumulate_counts=generation_dict.get('accumulate_counts', False),
        max_step_retries=generation_dict.get('max_step_retries', 8),
        seed=generation_dict.get('seed', None),
    )

    return sampling_config, generation_config


def save_config(
    config_path: str,
    sampling_config: SamplingConfig,
    generation_config: GenerationConfig,
):
    """Write sampling and generation configs to a YAML file."""
    with open(config_path, 'w') as f:
        yaml.safe_dump(
            {
                'sampling': sampling_config.to_dict(),
                'generation': generation_config.to_dict(),
            },
            f,
            default_flow_style=False,
        )
