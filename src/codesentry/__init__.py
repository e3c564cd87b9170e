"""CodeSentry: rule-based code quality and security review."""

__version__ = "2.0.0"
