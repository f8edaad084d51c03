"""crossrun: run browser test pages across many browsers through one long-poll hub."""

__version__ = "0.1.0"
