"""aggon: declarative, content-addressed addon manager.

Desired addon state is declared in a JSON configuration. aggon fetches
every addon into an immutable content-addressed store, activates it in
each game installation through symlinks, and records each converged
state as a numbered generation that can be rolled back to.
"""

__version__ = "2.0.0"
__description__ = "Declarative, content-addressed WoW addon manager"

from aggon.core.engine import Engine
from aggon.cli.app import app as cli

__all__ = ["Engine", "cli", "__version__"]
