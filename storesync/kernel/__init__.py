"""Kernel: shared errors, time helpers, logging setup."""
