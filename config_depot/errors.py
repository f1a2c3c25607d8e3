from typing import Any


class ConfigStoreError(Exception):
    """
    Base error for store operations.

    `context` carries application/environment/operation details for logs and
    the request layer. It must never hold credentials.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


class RetrievalError(ConfigStoreError):
    """Reading documents, history or the repository listing failed."""


class MutationError(ConfigStoreError):
    """
    Creating a repository, object, commit or reference failed.

    `step` names the failing step and `created` maps earlier steps to the ids
    of objects they already created (left orphaned, never cleaned up).
    """

    def __init__(
        self,
        message: str,
        step: str,
        created: dict[str, str] | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, step=step, **context)
        self.step = step
        self.created = dict(created or {})


class InvalidCommitRef(ValueError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"Invalid commit identifier: {identifier!r}")
        self.identifier = identifier
