"""Shared utilities: logging, retry/cancellation helpers, reply parsing, prompts."""
