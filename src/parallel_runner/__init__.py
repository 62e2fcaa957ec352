"""Run batches of CLI agent prompts in parallel with durable sessions."""

__version__ = "1.0.0"
