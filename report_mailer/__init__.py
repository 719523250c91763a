"""Intelligent report mailer: admin-panel report -> per-group AI email drafts."""

__version__ = "0.1.0"
