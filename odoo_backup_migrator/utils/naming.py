"""
Unique name generation for scratch directories and ephemeral databases.

Both scratch directories and temporary databases are named from a UTC
millisecond timestamp plus a short random suffix, so two runs started in the
same millisecond still get distinct names.

Example:
    >>> unique_name("odoo-migration", "-")
    'odoo-migration-1762072245123-3f9c2a1b'
    >>> unique_name("odoo_migration", "_")
    'odoo_migration_1762072245123_b71e04d2'
"""

import uuid

from .time import epoch_millis

# Length of the random hex suffix appended to generated names
SUFFIX_LENGTH = 8


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    """Return ``length`` lowercase hex characters from a fresh UUID4."""
    return uuid.uuid4().hex[:length]


def unique_name(prefix: str, separator: str = "-") -> str:
    """
    Build ``{prefix}{sep}{epoch_ms}{sep}{random}``.

    Args:
        prefix: Leading name component (e.g. "odoo-migration")
        separator: Character joining the components. Use "_" for names that
            must be valid unquoted SQL identifiers.

    Returns:
        Generated name, lowercase and filesystem-safe
    """
    return separator.join([prefix, str(epoch_millis()), random_suffix()])
