# engram/cli/commands: Command modules for the Engram CLI.
#
# Each module in this package provides one or more CLI commands.

from .learn import extract, ingest, learn
from .lookup import lookup
from .patterns import pattern_insights, patterns_list, stats, validate_pattern

__all__ = [
    # learn.py
    "learn",
    "extract",
    "ingest",
    # lookup.py
    "lookup",
    # patterns.py
    "patterns_list",
    "pattern_insights",
    "validate_pattern",
    "stats",
]
