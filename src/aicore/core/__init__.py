"""Core building blocks: configuration, logging, token budgeting and cost tracking."""
