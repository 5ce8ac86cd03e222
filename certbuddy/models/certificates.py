#!/usr/bin/env python3
#
# certbuddy/models/certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate lifecycle request and response models."""

from __future__ import annotations

import re
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# RFC 1123 hostname, optionally with a leading wildcard label
_DOMAIN_RE = re.compile(
	r"^(\*\.)?[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$"
)
# Lineage names as certbot writes them under live/ (e.g. example.com-0001)
_CERT_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9.\-_]{0,252}$")

Plugin = Literal["standalone", "webroot", "nginx", "apache", "dns"]
DnsProvider = Literal["manual", "cloudflare", "route53", "digitalocean", "google"]
RevocationReason = Literal[
	"unspecified",
	"keycompromise",
	"affiliationchanged",
	"superseded",
	"cessationofoperation",
]
CertificateStatus = Literal["valid", "expiring_soon", "expired"]


def validate_cert_name(v: str) -> str:
	v = v.strip()
	if not _CERT_NAME_RE.match(v) or ".." in v:
		raise ValueError("Invalid certificate name")
	return v


class CertificateRequest(BaseModel):
	"""Request to obtain a new certificate."""
	domains: list[str] = Field(..., min_length=1, max_length=100)
	email: EmailStr
	plugin: Plugin
	webroot_path: Optional[str] = Field(None, max_length=4096)
	dns_provider: Optional[DnsProvider] = None
	dns_credentials: Optional[dict[str, str]] = Field(
		None,
		description="Provider API credentials. Accepted but not applied yet.",
	)
	agree_tos: bool = False
	staging: bool = Field(default=False, description="Use the ACME staging environment")

	@field_validator("domains")
	@classmethod
	def validate_domains(cls, v: list[str]) -> list[str]:
		cleaned = [d.strip().lower() for d in v]
		for domain in cleaned:
			if not domain or len(domain) > 253 or not _DOMAIN_RE.match(domain):
				raise ValueError(f"Invalid domain: {domain!r}")
		return cleaned

	@model_validator(mode="after")
	def validate_plugin_options(self) -> "CertificateRequest":
		if self.plugin == "webroot" and not self.webroot_path:
			raise ValueError("webroot_path is required for the webroot plugin")
		if self.plugin == "dns" and not self.dns_provider:
			raise ValueError("dns_provider is required for the dns plugin")
		return self

	@property
	def is_manual_dns(self) -> bool:
		return self.plugin == "dns" and self.dns_provider == "manual"


class RenewalOptions(BaseModel):
	"""Renewal options; without ``cert_name`` every due certificate is renewed."""
	cert_name: Optional[str] = Field(None, max_length=253)
	dry_run: bool = False
	force_renewal: bool = False

	@field_validator("cert_name")
	@classmethod
	def check_cert_name(cls, v: Optional[str]) -> Optional[str]:
		return None if v is None else validate_cert_name(v)


class RevocationOptions(BaseModel):
	cert_name: str = Field(..., min_length=1, max_length=253)
	reason: Optional[RevocationReason] = None
	delete_after_revoke: bool = False

	@field_validator("cert_name")
	@classmethod
	def check_cert_name(cls, v: str) -> str:
		return validate_cert_name(v)


class Certificate(BaseModel):
	"""A certificate lineage as reported by ``certbot certificates``."""
	name: str
	domains: list[str]
	expiry: str
	status: CertificateStatus
	serial_number: Optional[str] = None
	path: Optional[str] = None
	issuer: Optional[str] = None
	not_before: Optional[str] = None
	key_type: Optional[str] = None


class DnsChallenge(BaseModel):
	"""DNS-01 challenge snapshot written by the manual auth hook."""
	domain: str
	validation: str
	record_name: str
	timestamp: str
