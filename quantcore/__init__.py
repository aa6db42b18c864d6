"""Quantcore - portfolio and market analytics engine."""

__version__ = "1.0.0"
