"""teamwire test suite.

Run with::

    python -m pytest tests/ -v
"""
