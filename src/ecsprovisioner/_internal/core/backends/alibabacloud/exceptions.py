from typing import Optional

from Tea.exceptions import TeaException

from ecsprovisioner._internal.core.errors import ComputeError

NOT_FOUND_HTTP_STATUS = 404


class AlibabaCloudAPIError(ComputeError):
    """
    An error returned by the Alibaba Cloud API.
    """

    def __init__(
        self,
        code: Optional[str],
        message: Optional[str],
        request_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.request_id = request_id
        self.status_code = status_code
        msg = f"{code}: {message}"
        if request_id:
            msg += f" (request id: {request_id})"
        super().__init__(msg)

    @classmethod
    def from_tea_exception(cls, e: TeaException) -> "AlibabaCloudAPIError":
        request_id = None
        status_code = getattr(e, "statusCode", None)
        if isinstance(e.data, dict):
            request_id = e.data.get("RequestId")
            if status_code is None:
                status_code = e.data.get("statusCode")
        return cls(
            code=e.code,
            message=e.message,
            request_id=request_id,
            status_code=status_code,
        )


def is_not_found_error(e: Exception) -> bool:
    """
    Returns `True` if `e` means the resource does not exist,
    e.g. `InvalidInstanceId.NotFound`.
    """
    if not isinstance(e, AlibabaCloudAPIError):
        return False
    if e.status_code == NOT_FOUND_HTTP_STATUS:
        return True
    return e.code is not None and e.code.endswith("NotFound")
