"""Core request pipeline for the mention bot.

This package provides:
- Trigger detection and request context parsing
- Delivery idempotency and the concurrency admission gate
- The tracking comment lifecycle
- Data fetching, formatting and prompt building
- Repository checkout and agent execution
- The RequestPipeline orchestrating all of the above
"""
