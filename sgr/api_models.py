from __future__ import annotations

import ipaddress
import re

from pydantic import BaseModel, Field, field_validator

HOSTNAME_RE = re.compile(r"^(?=.{1,253}$)[A-Za-z0-9]([A-Za-z0-9\-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9\-]{0,61}[A-Za-z0-9])?)*$")


class RegisterMemberRequest(BaseModel):
    instance_id: str = Field(..., min_length=1, max_length=128, description="Unique id of the cluster process")
    app_id: str | None = Field(None, description="Application id; defaults to this node's app_name")
    region: str = Field(..., min_length=1, description="Data-center / region identifier")
    hostname: str = Field(..., description="Private address or internal DNS name")
    host_ip: str = Field(..., description="Publicly routable address")

    @field_validator("hostname")
    @classmethod
    def _check_hostname(cls, v: str) -> str:
        if not HOSTNAME_RE.match(v):
            raise ValueError("hostname must be an IP address or DNS name")
        return v

    @field_validator("host_ip")
    @classmethod
    def _check_host_ip(cls, v: str) -> str:
        ipaddress.ip_address(v)
        return v


class SetPropertyRequest(BaseModel):
    property: str = Field(..., min_length=1, max_length=128)
    value: str
    region: str = Field("", description="Empty applies to every region")
