"""
Manufacturing Kernel

Shared infrastructure for the furniture production and procurement engine:
- Structured JSON logging with request-scoped context
- Typed exceptions with machine-readable codes
- Injectable clock and workflow value objects
- SQLAlchemy base, engine and optimistic-locking unit of work
- Ports for inventory and supplier collaborators
- Business event sink
"""

__version__ = "0.1.0"
