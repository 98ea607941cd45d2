"""Error taxonomy shared by the teaching and planning services.

Each class subclasses the builtin the web adapter already maps (LookupError →
404, PermissionError → 403, ValueError → 400) and carries a short machine code
in ``args[0]`` / ``code``.
"""

from __future__ import annotations


class NotFound(LookupError):
    def __init__(self, code: str = "not_found"):
        super().__init__(code)
        self.code = code


class Forbidden(PermissionError):
    def __init__(self, code: str = "forbidden"):
        super().__init__(code)
        self.code = code


class InvalidInput(ValueError):
    def __init__(self, code: str = "invalid_input"):
        super().__init__(code)
        self.code = code


__all__ = ["Forbidden", "InvalidInput", "NotFound"]
