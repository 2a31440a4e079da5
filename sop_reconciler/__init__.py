"""SOP Reconciler - document-to-SOP extraction, conflict detection and bilingual merging."""

__version__ = "0.1.0"
