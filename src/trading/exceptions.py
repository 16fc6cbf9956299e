class TrackerError(Exception):
    """Tracker-stage failure. Fatal to one tracker, never to the manager."""


class ExecutionFailed(TrackerError):
    pass


class SubscriptionError(TrackerError):
    pass


class InvalidTransition(TrackerError):
    pass


class DuplicateTracker(TrackerError):
    pass
