from __future__ import annotations


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


class ProviderError(RuntimeError):
    """Provider call reached the provider but was refused or failed."""

    def __init__(self, code: str, message: str = ""):
        self.code = (code or "PROVIDER_ERROR").strip()
        self.detail = (message or "").strip()
        super().__init__(f"{self.code}:{self.detail}" if self.detail else self.code)
