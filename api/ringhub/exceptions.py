"""Error types raised by the fork-limit engine.

Policy denials are not errors: they come back as a RateLimitDecision with
allowed=False. Only infrastructure failures and programming errors are
exceptions.
"""


class StoreUnavailable(Exception):
    """A counter, reputation or directory call failed.

    Always caught where the engine uses the store and resolved fail-open.
    """

    def __init__(self, store: str, operation: str) -> None:
        super().__init__(f"{store} store unavailable during {operation}")
        self.store = store
        self.operation = operation


class ConfigurationError(Exception):
    """The engine was called in a way no deployment should ever call it."""


class UnknownActionError(ConfigurationError):
    def __init__(self, action: str) -> None:
        super().__init__(f"Unknown rate limit action: {action}")
        self.action = action
