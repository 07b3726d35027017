"""Exceptions raised by the fee engine."""


class FeeEngineError(Exception):
    """Base class for fee engine failures."""


class MalformedEntryError(FeeEngineError, ValueError):
    """An entry row cannot be interpreted (participants, timestamps)."""

    def __init__(self, message: str, entry_id=None):
        super().__init__(message)
        self.entry_id = entry_id


class FeeCalculationError(FeeEngineError, ValueError):
    """The calculator was called with arguments it cannot price."""
