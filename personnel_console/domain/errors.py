from __future__ import annotations


class ConsoleError(Exception):
    pass


class ValidationError(ConsoleError):
    pass


class NotFoundError(ConsoleError):
    pass


class ConflictError(ConsoleError):
    pass


class PreconditionError(ConsoleError):
    pass


class AuthError(ConsoleError):
    pass
