"""
Service URL computation and login redirects.
"""

import re
from urllib.parse import quote_plus
from cas_gate.core.exceptions import ConfigurationError
from cas_gate.core.request import GateRequest
from cas_gate.models.schemas import GateConfig

# Only a "ticket" parameter that begins a query component is stripped
TICKET_MID_STRING = re.compile(r"(?<=[?&])ticket=[^&]*&")
TICKET_END_STRING = re.compile(r"(?<=[?&])ticket=[^&]*$")
TRAILING_AMPERSAND = re.compile(r"&$")
TRAILING_QUESTION_MARK = re.compile(r"\?$")


def strip_ticket(url: str) -> str:
    """
    Remove the ``ticket`` query parameter from a URL.

    Mid-string occurrences go first so that removing an end-string one
    cannot leave a dangling ``&``; a trailing ``&`` or ``?`` left over is
    then dropped.

    Args:
        url: Absolute URL, possibly carrying a ticket

    Returns:
        The URL without the ticket parameter
    """
    url = TICKET_MID_STRING.sub("", url)
    url = TICKET_END_STRING.sub("", url)
    url = TRAILING_AMPERSAND.sub("", url)
    url = TRAILING_QUESTION_MARK.sub("", url)
    return url


def encode(url: str) -> str:
    """Form-encode a whole URL for use as a query parameter value."""
    return quote_plus(url, safe="")


class ServiceURLResolver:
    """Computes the URL CAS should treat as the protected resource."""

    def __init__(self, config: GateConfig):
        self.config = config

    def request_url(self, request: GateRequest) -> str:
        """The request URL, with the configured server name in place of the request's host."""
        netloc = self.config.server_name or request.netloc
        url = f"{request.scheme}://{netloc}{request.path}"
        if request.query_string:
            url += "?" + request.query_string
        return url

    def service_url(self, request: GateRequest) -> str:
        """
        The service URL for login and validation, not encoded.

        A configured service URL is returned verbatim. Otherwise it is built
        from the server name (or the request host) plus the request path and
        query, minus any ticket, so the URL sent at validation matches the
        one sent at login.
        """
        if self.config.service_url is not None:
            return self.config.service_url
        return strip_ticket(self.request_url(request))

    def encoded_service_url(self, request: GateRequest) -> str:
        return encode(self.service_url(request))

    def redirect_url(self, request: GateRequest) -> str:
        """Where to send the browser after validation: the same URL without its ticket."""
        return strip_ticket(self.request_url(request))

    def login_redirect(self, request: GateRequest) -> str:
        """
        Build the redirect to the CAS login endpoint.

        Raises:
            ConfigurationError: If no login URL is configured
        """
        login_url = self.config.login_url
        if login_url is None:
            raise ConfigurationError(
                "A login_url is required to redirect requests that carry no ticket"
            )

        location = f"{login_url}?service={self.encoded_service_url(request)}"
        if self.config.renew:
            location += "&renew=true"
        if self.config.gateway:
            location += "&gateway=true"
        if self.config.logout_callback_url:
            location += "&logoutCallback=" + encode(self.config.logout_callback_url)
        return location
