"""Replication and reconciliation of project metadata between Azure DevOps projects."""

__version__ = "1.0.0"
