"""Application errors that carry a machine-readable code."""

from __future__ import annotations


class AppError(Exception):
    """An error with a stable code, a human message and an optional cause."""

    def __init__(self, code: str, message: str, err: BaseException | None = None) -> None:
        self.code = code
        self.message = message
        self.err = err
        super().__init__(code, message)
        if err is not None:
            self.__cause__ = err

    def __str__(self) -> str:
        if self.err is not None:
            return f"[{self.code}] {self.message}: {self.err}"
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"AppError(code={self.code!r}, message={self.message!r}, err={self.err!r})"

    def wrap(self, err: BaseException) -> AppError:
        """Return a copy of this error that carries ``err`` as its cause."""
        return AppError(self.code, self.message, err)

    def with_message(self, message: str) -> AppError:
        """Return a copy of this error with a different message and no cause."""
        return AppError(self.code, message)


NOT_FOUND = AppError("NOT_FOUND", "data not found")
INVALID_ARGUMENT = AppError("INVALID_ARGUMENT", "invalid argument provided")
UNAUTHENTICATED = AppError("UNAUTHENTICATED", "authentication failed")
INTERNAL = AppError("INTERNAL_ERROR", "an internal errors occurred")


def get_code(err: BaseException | None) -> str:
    """Return the code of the first AppError in the cause chain of ``err``."""
    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        if isinstance(current, AppError):
            return current.code
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return INTERNAL.code