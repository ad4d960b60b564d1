# =============================================================================
# src/cli/__init__.py - CLI Module Overview
# =============================================================================
#
# Command-line tools for operators and developers who need to drive the
# VintageVision pipeline outside the API server.
#
#   EVALUATION (evaluate.py)
#      Scores the four-stage pipeline against the packaged ground-truth
#      corpus (smoke sample, full corpus, or a single item) and prints
#      the evaluation report as text or JSON.
#
# Architecture Notes:
#   - argparse for argument parsing (not Click/Typer).
#   - Heavy imports (src.main, vision SDKs) are deferred inside functions
#     so argument errors return immediately.
#   - Services are assembled with src.main.build_components(); the CLI
#     owns and closes the shared HTTP client.
# =============================================================================

"""CLI tools for the VintageVision pipeline.

- ``python -m src.cli.evaluate`` - score the pipeline against ground truth.
"""
