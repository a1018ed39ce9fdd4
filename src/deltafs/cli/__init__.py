"""deltafs CLI: versioned text files in a SQL database."""

from ._helpers import main  # noqa: F401 (entry point)

# Import command modules to register Click commands with the main group.
from . import _basic, _merge  # noqa: F401
