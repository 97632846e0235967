"""lazycurl models - request and environment data types."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class HttpMethod(enum.Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    CONNECT = "CONNECT"

    @classmethod
    def default(cls) -> HttpMethod:
        return cls.GET

    @classmethod
    def parse(cls, name: str) -> HttpMethod:
        """Case-insensitive lookup. Raises ValueError for unknown methods."""
        try:
            return cls(name.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown HTTP method: {name!r}") from None


@dataclass
class KeyValue:
    """One header, query parameter or form field."""

    key: str
    value: str
    enabled: bool = True


@dataclass
class CurlOption:
    """Arbitrary curl flag, e.g. ``-v`` or ``--max-time 10``."""

    flag: str
    value: str | None = None
    enabled: bool = True


# ── Request body variants ────────────────────────────────────────────────


@dataclass(frozen=True)
class NoBody:
    pass


@dataclass(frozen=True)
class RawBody:
    content: str


@dataclass(frozen=True)
class FormDataBody:
    items: tuple[KeyValue, ...] = ()


@dataclass(frozen=True)
class BinaryBody:
    path: str


RequestBody = NoBody | RawBody | FormDataBody | BinaryBody


# ── Request ──────────────────────────────────────────────────────────────


@dataclass
class Request:
    """Structured description of one curl request.

    Order of headers, query params and options is the order they are
    rendered in. Disabled entries are kept but never rendered.
    """

    url: str = "https://"
    method: HttpMethod | None = field(default_factory=HttpMethod.default)
    headers: list[KeyValue] = field(default_factory=list)
    query_params: list[KeyValue] = field(default_factory=list)
    body: RequestBody = field(default_factory=NoBody)
    options: list[CurlOption] = field(default_factory=list)

    def add_header(self, key: str, value: str, enabled: bool = True) -> KeyValue:
        header = KeyValue(key, value, enabled)
        self.headers.append(header)
        return header

    def add_query_param(self, key: str, value: str, enabled: bool = True) -> KeyValue:
        param = KeyValue(key, value, enabled)
        self.query_params.append(param)
        return param

    def add_option(
        self,
        flag: str,
        value: str | None = None,
        enabled: bool = True,
    ) -> CurlOption:
        option = CurlOption(flag, value, enabled)
        self.options.append(option)
        return option

    def set_method(self, method: HttpMethod | str | None) -> None:
        if isinstance(method, str):
            method = HttpMethod.parse(method)
        self.method = method

    def set_body(self, body: RequestBody) -> None:
        self.body = body


# ── Environment ──────────────────────────────────────────────────────────


@dataclass
class EnvironmentVariable:
    key: str
    value: str
    is_secret: bool = False


@dataclass
class Environment:
    """Named set of ``{{key}}`` substitution variables."""

    name: str = "default"
    variables: list[EnvironmentVariable] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, name: str, values: dict[str, str]) -> Environment:
        env = cls(name)
        for key, value in values.items():
            env.add_variable(key, value)
        return env

    def get_variable(self, key: str) -> str | None:
        for variable in self.variables:
            if variable.key == key:
                return variable.value
        return None

    def add_variable(self, key: str, value: str, is_secret: bool = False) -> None:
        self.variables.append(EnvironmentVariable(key, value, is_secret))

    def update_variable(self, key: str, value: str) -> bool:
        for variable in self.variables:
            if variable.key == key:
                variable.value = value
                return True
        return False

    def set_variable(self, key: str, value: str, is_secret: bool = False) -> None:
        """Update key in place, or append it if missing."""
        if not self.update_variable(key, value):
            self.add_variable(key, value, is_secret)

    def remove_variable(self, key: str) -> bool:
        for index, variable in enumerate(self.variables):
            if variable.key == key:
                del self.variables[index]
                return True
        return False

    def masked(self) -> dict[str, str]:
        """Display view: secret values are replaced with ****."""
        view: dict[str, str] = {}
        for v in self.variables:
            view.setdefault(v.key, "****" if v.is_secret else v.value)
        return view
