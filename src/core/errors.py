from __future__ import annotations


class ProviderError(Exception):
    """Raised when an upstream provider (Plaid, Supabase, OpenRouter) cannot serve a request."""


class NoLinkedItemsError(Exception):
    pass


class SyncRateLimited(Exception):
    def __init__(self, hours_remaining: int):
        super().__init__(f"Rate limit exceeded. Try again in {hours_remaining} hour(s).")
        self.hours_remaining = int(hours_remaining)


class NotFoundError(Exception):
    pass


class ValidationError(Exception):
    pass
