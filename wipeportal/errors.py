class WipePortalError(Exception):
    pass


class RemoteOperationError(WipePortalError):
    """An upload, scan or wipe call failed in transport or returned non-2xx."""

    def __init__(self, operation: str, detail: str = "", status_code: int | None = None):
        self.operation = operation
        self.status_code = status_code
        self.detail = detail or f"{operation.capitalize()} failed"
        if status_code is None:
            message = f"{operation} failed: {self.detail}"
        else:
            message = f"{operation} failed ({status_code}): {self.detail}"
        super().__init__(message)


class WizardStateError(WipePortalError):
    pass


class CaptchaLockedError(WipePortalError):
    pass
