"""Exception hierarchy shared by the engine and its collaborators.

Transient errors are absorbed per candidate (or per threshold for POI
searches). Fatal errors abort the whole run after partial progress has
been persisted.
"""


class RouteEngineError(Exception):
    """Base class for every error raised by the route engine."""


class TransientCollaboratorError(RouteEngineError):
    """A collaborator failed in a way that may succeed on a later attempt."""


class NoRouteFoundError(TransientCollaboratorError):
    """The routing backend answered but found no path between the points."""


class FatalCollaboratorError(RouteEngineError):
    """Authorization, billing or quota failure; further requests are doomed."""


class GenerationAborted(RouteEngineError):
    """Raised to the caller when a run stopped on a fatal collaborator error."""

    def __init__(self, reason: str, routes: list | None = None):
        super().__init__(reason)
        self.reason = reason
        self.routes = routes or []


class GenerationCancelled(RouteEngineError):
    """The caller cancelled the run; raised between candidate attempts."""
