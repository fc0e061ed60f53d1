import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable

from app.errors import NotificationFailedError
from app.services import email_service

logger = logging.getLogger(__name__)

_executor: ThreadPoolExecutor | None = None


def get_notification_executor() -> ThreadPoolExecutor:
    """Shared worker pool so SMTP round trips stay off the request and sweep paths."""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notifier")
    return _executor


def shutdown_notification_executor() -> None:
    """Flush queued emails on application shutdown."""
    global _executor
    if _executor is not None:
        _executor.shutdown(wait=True)
        _executor = None


class Notifier:
    """Best-effort email dispatch. Failures are logged and never raised.

    With an ``executor`` the email is queued and ``send`` returns as soon as it
    is accepted; without one it is delivered inline.
    """

    def __init__(
        self,
        sender: Callable[[str, str, dict], None] | None = None,
        executor: Executor | None = None,
    ):
        self._sender = sender or email_service.send_template_email
        self._executor = executor

    def send(self, to_address: str | None, template_name: str, template_data: dict) -> bool:
        if not to_address:
            logger.warning("Skipping %s notification: no recipient address", template_name)
            return False
        if self._executor is None:
            return self._deliver(to_address, template_name, template_data)
        try:
            self._executor.submit(self._deliver, to_address, template_name, template_data)
        except RuntimeError as exc:
            # Executor already shut down; deliver inline rather than drop the email.
            logger.warning("Notification queue unavailable (%s), sending %s inline", exc, template_name)
            return self._deliver(to_address, template_name, template_data)
        return True

    def _deliver(self, to_address: str, template_name: str, template_data: dict) -> bool:
        try:
            self._sender(to_address, template_name, template_data)
        except Exception as exc:
            error = NotificationFailedError(f"{template_name} to {to_address} failed: {exc}")
            logger.warning("Notification failed: %s", error.detail)
            return False
        return True
