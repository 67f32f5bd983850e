"""CSV importer for business listings.

Stages: preview -> validate -> commit, see ``listing_import.services.orchestrator``.
"""

__version__ = "0.1.0"
