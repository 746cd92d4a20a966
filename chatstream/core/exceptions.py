"""Error types shared by the server and the client."""


class ProviderError(Exception):
    """An upstream generation call failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider


class ProviderNotAvailableError(Exception):
    pass


class PersistenceError(Exception):
    pass


class TurnInProgressError(Exception):
    pass
