"""
Pydantic models for cas-gate.
"""

import re
from typing import Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


AttributeValue = Union[str, List[str]]


class Receipt(BaseModel):
    """
    Result of a successful CAS ticket validation.

    A receipt is immutable once built. It is owned by the session that
    validated it until the session is cleared or a newer validation
    supersedes it.
    """
    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1)
    service_ticket: str = Field(..., min_length=1)
    primary_authentication: bool = False
    proxy_list: List[str] = Field(default_factory=list)
    pgt_iou: Optional[str] = None
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)
    validate_url: Optional[str] = None

    @property
    def proxied(self) -> bool:
        """True when the ticket was presented by an intermediate service."""
        return len(self.proxy_list) > 0

    @property
    def proxying_service(self) -> Optional[str]:
        """The service that proxied authentication to us, if any."""
        if not self.proxy_list:
            return None
        return self.proxy_list[0]

    def attribute(self, name: str) -> Optional[str]:
        """Return a released attribute, taking the first value of multi-valued ones."""
        value = self.attributes.get(name)
        if isinstance(value, list):
            return value[0] if value else None
        return value


class GateConfig(BaseModel):
    """
    Validated, read-only configuration of an AuthGate.

    Built once at startup by ``create_gate_config``; any invalid combination
    is reported there as a ConfigurationError.
    """
    model_config = ConfigDict(frozen=True)

    login_url: Optional[str] = None
    validate_url: str
    service_url: Optional[str] = None
    server_name: Optional[str] = None
    renew: bool = False
    gateway: bool = False
    proxy_callback_url: Optional[str] = None
    logout_callback_url: Optional[str] = None
    authorized_proxies: List[str] = Field(default_factory=list)
    url_pattern_exclude: List[str] = Field(default_factory=list)
    wrap_request: bool = False
    remote_user_attribute: Optional[str] = None

    @field_validator('validate_url')
    def validate_validate_url(cls, v):
        if not (v.startswith("https://") or v.startswith("http://")):
            raise ValueError(f'validate_url must start with http:// or https://, its current value is [{v}]')
        return v

    @field_validator('service_url')
    def validate_service_url(cls, v):
        if v is not None and not (v.startswith("https://") or v.startswith("http://")):
            raise ValueError(f'service_url must start with http:// or https://; its current value is [{v}]')
        return v

    @field_validator('url_pattern_exclude')
    def validate_patterns(cls, v):
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f'Invalid url exclusion pattern [{pattern}]: {e}')
        return v

    @model_validator(mode='after')
    def validate_combinations(self):
        if self.gateway and self.renew:
            raise ValueError('gateway and renew cannot both be true')
        if self.server_name is not None and self.service_url is not None:
            raise ValueError('server_name and service_url cannot both be set: choose one')
        return self


class SessionInfoResponse(BaseModel):
    """Response model describing the authenticated session."""
    username: str
    remote_user: Optional[str] = None
    primary_authentication: bool
    proxied: bool
    proxying_service: Optional[str] = None
    receipt_fresh: bool = False
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)


class ProxyCallbackResponse(BaseModel):
    """Acknowledgement returned to CAS for a proxy-granting callback."""
    status: Literal["ok"] = "ok"
