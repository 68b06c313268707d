"""vault_fees package root.

Derive performance, withdrawal and deposit fees for yield vault strategies
across many EVM chains and keep them in a refreshed cache.

- See :py:class:`vault_fees.service.VaultFeeService` to get started
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    # Use Python tuple comparison for version numbers
    # https://stackoverflow.com/a/1093331/315168
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"vault-fees needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
