"""Test suite for deployflow.

Test organization:
- fixtures/: Test doubles (scripted runner, fake clock, recording hooks)
- unit/: Unit tests for individual modules and pipeline scenarios

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
