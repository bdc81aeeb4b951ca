"""ledgerun: phase-by-phase execution of a task ledger with coding agents."""

__version__ = "0.1.0"
