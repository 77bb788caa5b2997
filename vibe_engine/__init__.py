"""Multi-agent task orchestration engine with AI-provider selection."""

__version__ = "0.1.0"
