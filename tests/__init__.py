"""Test suite for MCMC population management.

All tests run on CPU.
"""
