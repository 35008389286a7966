"""Grant computation and verification helpers."""

from .engine import GrantEngine, capability_for_verb
from .simulator import PolicySimulator

__all__ = ["GrantEngine", "PolicySimulator", "capability_for_verb"]
