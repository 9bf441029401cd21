"""
Sync error taxonomy

Component-level errors bubble up to the sync session, which classifies them
as channel-scoped (the pass continues) or session-scoped (the pass aborts).
"""


class SyncError(Exception):
    """Base class for errors raised by the sync engine"""
    pass


class SourceUnavailable(SyncError):
    """The program source failed to deliver channels or programs"""
    pass


class InvalidRepeatCycle(SyncError, ValueError):
    """A repeatable channel's template cycle has no positive duration"""
    pass


class NoChannelsAvailable(SourceUnavailable):
    """The program source reported no channels at all"""
    pass


class StoreError(SyncError):
    """The store failed to read or write"""
    pass


class StoreWriteFailure(StoreError):
    """The store rejected a write"""
    pass


class SyncCancelled(SyncError):
    """Raised inside a session when its cancel signal is observed"""
    pass


class UnknownInputError(SyncError, KeyError):
    """No program source is registered for the requested input"""

    def __init__(self, input_id: str):
        super().__init__(input_id)
        self.input_id = input_id

    def __str__(self) -> str:
        return f"No program source registered for input '{self.input_id}'"
