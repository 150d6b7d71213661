"""
Test suite for the grade allocation engine.

Run all tests: pytest
Run with coverage: pytest --cov=. --cov-report=html
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_single_level_allocator.py -v
"""
