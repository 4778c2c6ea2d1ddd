from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode


_PAGE_OUTCOMES = {
    "/approved": "approved",
    "/already-processed": "already_processed",
    "/cancelled": "cancelled",
    "/rejected": "rejection_form",
    "/rejected/confirmation": "rejection_confirmed",
    "/error": "error",
}


@dataclass(frozen=True, slots=True)
class RedirectResolver:
    """Builds the public page URLs the action endpoints redirect to."""

    base_url: str

    def _url(self, path: str, **params: str | None) -> str:
        query = urlencode({key: value for key, value in params.items() if value})
        root = self.base_url.rstrip("/")
        return f"{root}{path}?{query}" if query else f"{root}{path}"

    def error(self, message: str) -> str:
        return self._url("/error", message=message)

    def approved(self, record_id: str, approved_by: str | None) -> str:
        return self._url("/approved", id=record_id, approvedBy=approved_by)

    def already_processed(self, status: str, record_id: str, processed_by: str | None = None) -> str:
        return self._url("/already-processed", status=status, id=record_id, processedBy=processed_by)

    def cancelled(self, record_id: str) -> str:
        return self._url("/cancelled", id=record_id)

    def rejection_form(self, token: str, error: str | None = None) -> str:
        return self._url("/rejected", token=token, error=error)

    def rejection_confirmed(self, record_id: str) -> str:
        return self._url("/rejected/confirmation", id=record_id)

    def outcome_of(self, location: str | None) -> str:
        """Name the public page a redirect lands on, or ``"none"`` when it is not one of ours."""
        if not location:
            return "none"
        root = self.base_url.rstrip("/")
        target = location.split("?", 1)[0]
        if not target.startswith(root):
            return "none"
        return _PAGE_OUTCOMES.get(target[len(root) :], "none")
