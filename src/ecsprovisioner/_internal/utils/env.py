import os
from collections.abc import Mapping
from typing import Optional, overload


class Environ:
    """
    Typed access to environment variables. Malformed values raise `ValueError`
    naming the variable so that misconfiguration fails at startup.
    """

    def __init__(self, environ: Mapping[str, str]):
        self._environ = environ

    @overload
    def get_str(self, name: str, *, default: None = None) -> Optional[str]: ...

    @overload
    def get_str(self, name: str, *, default: str) -> str: ...

    def get_str(self, name: str, *, default: Optional[str] = None) -> Optional[str]:
        value = self._environ.get(name)
        if not value:
            return default
        return value

    @overload
    def get_int(self, name: str, *, default: None = None) -> Optional[int]: ...

    @overload
    def get_int(self, name: str, *, default: int) -> int: ...

    def get_int(self, name: str, *, default: Optional[int] = None) -> Optional[int]:
        raw_value = self._environ.get(name)
        if raw_value is None:
            return default
        try:
            return int(raw_value)
        except ValueError as e:
            raise ValueError(f"Invalid int value: {e}: {name}={raw_value}") from e


environ = Environ(os.environ)
