"""artguard - resilient contract validation for AI pipeline artifacts."""

__version__ = "0.1.0"
