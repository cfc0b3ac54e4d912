# =============================================================================
# agriai/cli/__init__.py: CLI Module Overview
# =============================================================================
#
# Operator tools that run the AgriAI stack without the web server:
#
#   ingest   upload a local file (or register a URL) as a document and
#            process it through the document queue, waiting for the outcome
#   ask      answer a question from the published corpus
#   status   print a document's state and its processing log
#
# Architecture Notes:
#   - argparse only, matching the rest of the project's tooling.
#   - Components are assembled with agriai.main.build_components, so the CLI
#     and the API share one wiring; heavy imports are deferred inside
#     functions to keep `--help` fast.
# =============================================================================

"""Command-line tools for AgriAI.

- ``python -m agriai.cli ingest FILE --title ...``: ingest a document
- ``python -m agriai.cli ask "..."``: ask a question
- ``python -m agriai.cli status DOCUMENT_ID``: document state and log
"""
