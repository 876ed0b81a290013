"""Workflow coordination for the skill builder.

Provides:
- Settings loaded from .env
- Structured logging
- The step workflow, its storage and agent adapters
- A small CLI surface
"""
