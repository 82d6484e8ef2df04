"""GitHub mention bot that delegates PR and issue requests to an AI agent.

This package provides:
- GitHub webhook intake with signature verification
- A request pipeline with delivery idempotency and bounded concurrency
- Context fetching via the GitHub GraphQL API
- Repository checkout and agent CLI execution
- A single tracking comment per request for progress and results
"""
