"""
GeoServer and NL Provider Configuration.

External collaborators reached over HTTP:
    - GeoServer REST API (SQL View publication)
    - Ollama (optional natural-language to SQL generation)

Exports:
    GeoServerConfig: GeoServer REST settings
    NLProviderConfig: Ollama adaptor settings
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from .defaults import GeoServerDefaults, NLProviderDefaults


class GeoServerConfig(BaseModel):
    """
    GeoServer REST client configuration (basic auth).
    """

    url: str = Field(
        default=GeoServerDefaults.URL,
        description="GeoServer base URL, without /rest",
        examples=["http://localhost:8080/geoserver"]
    )

    user: str = Field(
        default=GeoServerDefaults.USER,
        description="GeoServer admin username"
    )

    password: Optional[str] = Field(
        default=None,
        repr=False,
        description="GeoServer admin password"
    )

    timeout_seconds: float = Field(
        default=GeoServerDefaults.TIMEOUT_SECONDS,
        gt=0,
        description="HTTP timeout for REST calls"
    )

    @property
    def base_url(self) -> str:
        return self.url.rstrip('/')

    @property
    def rest_url(self) -> str:
        return f"{self.base_url}/rest"

    def debug_dict(self) -> dict:
        """Debug output with masked password."""
        return {
            "url": self.url,
            "user": self.user,
            "password": "***MASKED***" if self.password else None,
            "timeout_seconds": self.timeout_seconds,
        }

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            url=os.environ.get("GEOSERVER_URL", GeoServerDefaults.URL),
            user=os.environ.get("GEOSERVER_USER", GeoServerDefaults.USER),
            password=os.environ.get("GEOSERVER_PASSWORD"),
            timeout_seconds=float(os.environ.get("GEOSERVER_TIMEOUT", str(GeoServerDefaults.TIMEOUT_SECONDS))),
        )


class NLProviderConfig(BaseModel):
    """
    Ollama SQL generation adaptor configuration.
    """

    endpoint: str = Field(
        default=NLProviderDefaults.ENDPOINT,
        description="Ollama HTTP endpoint"
    )

    model: str = Field(
        default=NLProviderDefaults.MODEL,
        description="Model name passed to /api/generate"
    )

    temperature: float = Field(
        default=NLProviderDefaults.TEMPERATURE,
        ge=0.0,
        le=2.0,
        description="Sampling temperature; low values keep SQL deterministic"
    )

    max_tokens: int = Field(
        default=NLProviderDefaults.MAX_TOKENS,
        ge=1,
        description="num_predict option"
    )

    timeout_seconds: float = Field(
        default=NLProviderDefaults.TIMEOUT_SECONDS,
        gt=0,
        description="HTTP timeout for generation calls"
    )

    min_confidence: float = Field(
        default=NLProviderDefaults.MIN_CONFIDENCE,
        ge=0.0,
        le=1.0,
        description="Candidates below this confidence are reported as rejected"
    )

    def debug_dict(self) -> dict:
        return self.model_dump()

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            endpoint=os.environ.get("OLLAMA_ENDPOINT", NLProviderDefaults.ENDPOINT),
            model=os.environ.get("OLLAMA_MODEL", NLProviderDefaults.MODEL),
            temperature=float(os.environ.get("OLLAMA_TEMPERATURE", str(NLProviderDefaults.TEMPERATURE))),
            max_tokens=int(os.environ.get("OLLAMA_MAX_TOKENS", str(NLProviderDefaults.MAX_TOKENS))),
            timeout_seconds=float(os.environ.get("OLLAMA_TIMEOUT", str(NLProviderDefaults.TIMEOUT_SECONDS))),
            min_confidence=float(os.environ.get("NL_MIN_CONFIDENCE", str(NLProviderDefaults.MIN_CONFIDENCE))),
        )
