"""End-to-end tests that spawn real endpoint subprocesses.

Every test here is marked ``e2e``; skip them with ``pytest -m "not e2e"``.
"""
