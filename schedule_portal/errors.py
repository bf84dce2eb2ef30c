class BackendError(Exception):
    """Base error for GraphQL backend failures."""


class BackendUnavailableError(BackendError):
    """Backend could not be reached, answered non-2xx, or the circuit is open."""


class GraphQLError(BackendError):
    """The backend answered with a GraphQL ``errors`` entry."""


class BookingNotFoundError(GraphQLError):
    pass


class NotAuthorizedError(GraphQLError):
    pass


class InvalidTransitionError(Exception):
    def __init__(self, current, target):
        super().__init__(f"Invalid booking transition: {current} -> {target}")
        self.current = current
        self.target = target


class MeetingLinkError(ValueError):
    pass
