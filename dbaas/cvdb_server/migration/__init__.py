"""
Migration of anonymous session data into a principal's tenant database.
"""

from .workflow import MigrationResult, MigrationStep, MigrationWorkflow

__all__ = ["MigrationWorkflow", "MigrationStep", "MigrationResult"]
