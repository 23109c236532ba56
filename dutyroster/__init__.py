"""Duty roster scheduling core.

Modules:
- config: load and validate configuration (YAML or JSON)
- errors: error taxonomy shared by every component
- domain: SQLAlchemy models, repositories and database helpers
- services: availability, equity, rule engine, comp time and the roster book
- engine: schedule generator, swap workflow and the scheduling core facade
- io: CSV import/export helpers
- validator: post-generation invariant checks and report summaries
- cli: command-line interface entrypoints
"""

__all__ = [
    "config",
    "errors",
    "domain",
    "services",
    "engine",
    "io",
    "validator",
    "cli",
]

__version__ = "0.1.0"
