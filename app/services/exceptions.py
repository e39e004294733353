"""
Delivery queue exceptions.

Only infrastructure failures leave the processing cycle as exceptions;
item-level failures are recorded and rescheduled.
"""


class DeliveryQueueError(Exception):
    """Base error for the notification delivery queue."""


class QueueStoreUnavailableError(DeliveryQueueError):
    """The queue database could not be reached; the cycle cannot run."""


class PushGatewayError(DeliveryQueueError):
    """
    Push gateway call failed as a whole.

    Raised inside the gateway client only and converted to per-token
    transient outcomes before results leave it.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """
        Initialize gateway error.

        Args:
            message: Diagnostic message
            status_code: HTTP status returned by the gateway, if any
        """
        super().__init__(message)
        self.status_code = status_code
