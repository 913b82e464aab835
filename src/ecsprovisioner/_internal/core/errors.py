from typing import Optional


class ProvisionerError(Exception):
    pass


class ConfigurationError(ProvisionerError):
    pass


class RateLimitExceededError(ProvisionerError):
    """
    Raised when a launch could not acquire a rate limiter token before the caller's deadline.
    Callers should retry after a backoff.
    """

    pass


class ComputeError(ProvisionerError):
    pass


class InstanceNotFoundError(ComputeError):
    """
    The instance does not exist. Callers treat it as already converged, e.g. already deleted.
    """

    pass


class InsufficientCapacityError(ComputeError):
    """
    The cloud reported a stock-out for the requested offerings.
    The offerings are cached as unavailable; callers should broaden constraints or back off.
    """

    def __init__(self, msg: str, request_id: Optional[str] = None) -> None:
        self.request_id = request_id
        super().__init__(_with_request_id(msg, request_id))


class OperationNotSupportedError(ComputeError):
    """
    The instance is in a transient state in which the operation is rejected by the cloud.
    The operation should be retried later.
    """

    def __init__(self, instance_id: str, state: Optional[str] = None) -> None:
        self.instance_id = instance_id
        self.state = state
        msg = f"Operation is not supported for instance {instance_id}"
        if state is not None:
            msg += f" in state {state}"
        super().__init__(msg)


class ProvisioningError(ComputeError):
    """
    Fatal launch failure, e.g. a malformed response. Not retried automatically.
    """

    def __init__(self, msg: str, request_id: Optional[str] = None) -> None:
        self.request_id = request_id
        super().__init__(_with_request_id(msg, request_id))


def _with_request_id(msg: str, request_id: Optional[str]) -> str:
    if request_id:
        return f"{msg} (request id: {request_id})"
    return msg


class LaunchAbortedError(ProvisionerError):
    """
    The caller cancelled or its deadline passed before the launch was submitted.
    Nothing was launched.
    """

    pass
