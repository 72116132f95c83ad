"""
Configuration for both simulators.

Provides frozen, validated settings objects with upfront validation and
optional loading from environment variables / `.env`.
"""
