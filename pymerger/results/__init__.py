"""Structured results of merger simulations."""
