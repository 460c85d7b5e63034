"""Exceptions raised by the search pipeline."""


class SearchValidationError(ValueError):
    """The request was rejected before any storage access (empty query, bad filters)."""


class RetrievalError(Exception):
    """A ranker could not reach storage or missed its deadline."""
