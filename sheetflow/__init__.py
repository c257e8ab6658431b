"""sheetflow - tabular data onboarding core (mapping, transforms, validation)."""

__version__ = "0.1.0"
