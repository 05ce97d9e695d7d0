"""User-facing messages raised by story transitions.

Errors and informational notices travel on separate channels: an error is
a single dismissible banner (the latest failure wins), notices accumulate
until dismissed.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class StatusChannel:
    error: str | None = None
    notices: list[str] = field(default_factory=list)

    def report_error(self, message: str) -> None:
        self.error = message

    def notify(self, message: str) -> None:
        self.notices.append(message)

    def dismiss_error(self) -> None:
        self.error = None

    def dismiss_notices(self) -> None:
        self.notices.clear()

    def clear(self) -> None:
        self.dismiss_error()
        self.dismiss_notices()
