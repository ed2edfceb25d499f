"""simmer - background build watcher.

Watches a project tree, re-runs a build/lint/test command whenever relevant
files change, parses the command's output into diagnostics and keeps a live
report on screen.

Package Structure:
    - watch/: filesystem observation and change debouncing
    - executor/: run instances, process supervision, job scheduling
    - output/: escape-sequence decoding and diagnostic extraction
    - report/: the shared report model
    - cli/: terminal rendering, key input and the command line entry point
"""

# Version - should match pyproject.toml
__version__ = "0.4.0"
