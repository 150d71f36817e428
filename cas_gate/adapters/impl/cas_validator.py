"""
CAS 2.0 ticket validator.
"""

import logging
from typing import Dict, List, Optional
from xml.etree.ElementTree import Element
import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException
import httpx
from cas_gate.adapters.validator import ReceiptValidator
from cas_gate.core.exceptions import TicketInvalid, ValidatorError
from cas_gate.models.schemas import AttributeValue, Receipt

logger = logging.getLogger(__name__)

CAS_NS = "http://www.yale.edu/tp/cas"
NAMESPACES = {"cas": CAS_NS}

INVALID_TICKET = "INVALID_TICKET"


def _local_name(element: Element) -> str:
    tag = element.tag
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def parse_attributes(success: Element) -> Dict[str, AttributeValue]:
    """Collect released attributes; repeated elements become lists."""
    attributes: Dict[str, AttributeValue] = {}
    container = success.find("cas:attributes", NAMESPACES)
    if container is None:
        return attributes

    for child in container:
        name = _local_name(child)
        value = (child.text or "").strip()
        if name in attributes:
            existing = attributes[name]
            if isinstance(existing, list):
                existing.append(value)
            else:
                attributes[name] = [existing, value]
        else:
            attributes[name] = value
    return attributes


def parse_service_response(
    body: str,
    ticket: str,
    renew: bool = False,
    validate_url: Optional[str] = None
) -> Receipt:
    """
    Turn a ``cas:serviceResponse`` document into a Receipt.

    Args:
        body: XML body returned by the validate endpoint
        ticket: The ticket that was validated
        renew: Whether validation required fresh credentials
        validate_url: The endpoint that answered

    Returns:
        Receipt for a successful authentication

    Raises:
        TicketInvalid: For an INVALID_TICKET failure
        ValidatorError: For any other failure or an unreadable document
    """
    try:
        root = ET.fromstring(body)
    except (ET.ParseError, DefusedXmlException) as e:
        raise ValidatorError(f"Unreadable CAS response: {e}")

    failure = root.find("cas:authenticationFailure", NAMESPACES)
    if failure is not None:
        code = (failure.get("code") or "").strip()
        message = (failure.text or "").strip()
        if code == INVALID_TICKET:
            raise TicketInvalid(f"{code}: {message}", code=code)
        raise ValidatorError(f"CAS rejected validation: {code}: {message}", code=code or None)

    success = root.find("cas:authenticationSuccess", NAMESPACES)
    if success is None:
        raise ValidatorError("CAS response has neither success nor failure element")

    user = success.findtext("cas:user", default="", namespaces=NAMESPACES).strip()
    if not user:
        raise ValidatorError("CAS response is missing the authenticated user")

    proxies: List[str] = [
        (proxy.text or "").strip()
        for proxy in success.findall("cas:proxies/cas:proxy", NAMESPACES)
    ]
    pgt_iou = success.findtext("cas:proxyGrantingTicket", default=None, namespaces=NAMESPACES)

    return Receipt(
        username=user,
        service_ticket=ticket,
        primary_authentication=renew and not proxies,
        proxy_list=proxies,
        pgt_iou=pgt_iou.strip() if pgt_iou else None,
        attributes=parse_attributes(success),
        validate_url=validate_url
    )


class CasReceiptValidator(ReceiptValidator):
    """Validates tickets against a CAS ``serviceValidate``/``proxyValidate`` endpoint."""

    def __init__(
        self,
        validate_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the CAS validator.

        Args:
            validate_url: CAS 2.0 validate endpoint
            timeout: Seconds before a validation request is abandoned
            client: Optional preconfigured HTTP client
        """
        self.validate_url = validate_url
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False
        )

    async def validate(
        self,
        ticket: str,
        service: str,
        renew: bool = False,
        proxy_callback_url: Optional[str] = None
    ) -> Receipt:
        """Exchange a ticket for a Receipt."""
        params = {"service": service, "ticket": ticket}
        if renew:
            params["renew"] = "true"
        if proxy_callback_url:
            params["pgtUrl"] = proxy_callback_url

        logger.debug("Validating ticket %s... for service %s", ticket[:8], service)
        try:
            response = await self.client.get(self.validate_url, params=params)
        except httpx.TimeoutException as e:
            raise ValidatorError(f"Timed out validating ticket: {e}") from e
        except httpx.HTTPError as e:
            raise ValidatorError(f"Failed to reach CAS: {e}") from e

        if response.status_code != 200:
            raise ValidatorError(
                f"CAS validate endpoint returned HTTP {response.status_code}"
            )

        return parse_service_response(
            response.text,
            ticket,
            renew=renew,
            validate_url=self.validate_url
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
