from __future__ import annotations


class SimulatorError(Exception):
    """Base class for actions the engine declines."""


class InvalidConfiguration(SimulatorError):
    pass


class ChannelBusy(SimulatorError):
    pass


class NoActiveTarget(SimulatorError):
    pass


class InvalidAction(SimulatorError):
    """The action is not valid for the current state or mode."""
