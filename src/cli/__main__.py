# =============================================================================
# src/cli/__main__.py - Package Entry Point
# =============================================================================
#
# Enables running the CLI package itself as a module:
#     python -m src.cli smoke
#
# Delegates to the evaluation CLI (evaluate.py), currently the only tool.
# =============================================================================

"""Allow ``python -m src.cli`` execution."""

import sys

from src.cli.evaluate import main

sys.exit(main())
