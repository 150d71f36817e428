"""
Transport-neutral view of an incoming request.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit
from fastapi import Request


def parse_params(query_string: str) -> Dict[str, str]:
    """Decode a query string, keeping the first value of repeated parameters."""
    params: Dict[str, str] = {}
    for name, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(name, value)
    return params


@dataclass(frozen=True)
class GateRequest:
    """The parts of an HTTP request the gate decides on."""
    method: str
    scheme: str
    netloc: str
    path: str
    query_string: str = ""
    params: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_url(cls, url: str, method: str = "GET") -> "GateRequest":
        """Build a request from an absolute URL."""
        parts = urlsplit(url)
        return cls(
            method=method.upper(),
            scheme=parts.scheme,
            netloc=parts.netloc,
            path=parts.path or "/",
            query_string=parts.query,
            params=parse_params(parts.query)
        )

    @classmethod
    def from_starlette(cls, request: Request) -> "GateRequest":
        """Build a request from a Starlette/FastAPI request."""
        url = request.url
        return cls(
            method=request.method.upper(),
            scheme=url.scheme,
            netloc=url.netloc,
            path=url.path,
            query_string=url.query,
            params=parse_params(url.query)
        )

    @property
    def is_post(self) -> bool:
        return self.method == "POST"

    @property
    def url(self) -> str:
        """The absolute request URL, including the query string."""
        url = f"{self.scheme}://{self.netloc}{self.path}"
        if self.query_string:
            url += "?" + self.query_string
        return url

    @property
    def ticket(self) -> Optional[str]:
        """
        The ticket offered on this request.

        POSTs never offer a ticket so that a form submitted from a page that
        was just logged into is not treated as a second login. An empty
        ticket counts as no ticket.
        """
        if self.is_post:
            return None
        return self.params.get("ticket") or None
