"""gaterun - run quality gates against staged or changed files."""

__version__ = "0.3.0"
