"""Exception types raised by the battle engine."""


class BattleEngineError(Exception):
    """Base class for engine errors."""


class InvalidTransition(BattleEngineError, ValueError):
    """A round was asked to move between states that are not connected."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Illegal round transition {current} -> {target}")


class SynchronizationError(BattleEngineError, ValueError):
    """Controllers that must run together disagree on timing."""


class EmptyCatalogError(BattleEngineError, ValueError):
    """An operation needed at least one item and got none."""
