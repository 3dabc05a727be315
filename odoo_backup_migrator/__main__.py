"""
Entry point for running the Odoo Backup Migrator as a module.

Enables execution via:
    python -m odoo_backup_migrator [command] [options]

This is equivalent to running the installed CLI:
    odoo-backup-migrator [command] [options]

Examples:
    python -m odoo_backup_migrator --help
    python -m odoo_backup_migrator paths
    python -m odoo_backup_migrator migrate -i backup-16.zip -o backup-17.zip --embedded
"""

from odoo_backup_migrator.cli import app

if __name__ == "__main__":
    app()
