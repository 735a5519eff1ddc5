"""
Scope/category classification for expense transactions.

This package contains:
- classify: Remote classifier and the resilient wrapper with rule fallback
- client: Chat completions REST client
- fallback: Keyword rule classifier
- prompts: System and user prompt builders
"""
