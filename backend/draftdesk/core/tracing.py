"""
OpenTelemetry tracing configuration and utilities for the Draftdesk backend.

This module sets up distributed tracing for the slow, external part of every
draft operation:
- Language-model completions (generate, refine, fact-check)
- Transactional email delivery

Seeker addresses, API keys and email bodies are masked before they reach a
span.
"""

import os
import re
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter


def setup_tracing(service_name: str = "draftdesk-backend") -> TracerProvider | None:
    """
    Initialize OpenTelemetry tracing.

    Environment variables:
    - OTEL_EXPORTER_OTLP_ENDPOINT: OTLP collector endpoint (default: http://localhost:4317)
    - OTEL_TRACES_EXPORTER: "otlp", "console", or "none" (default: none)

    Returns:
        Configured TracerProvider, or None when tracing is disabled
    """
    exporter_type = os.getenv("OTEL_TRACES_EXPORTER", "none").lower()
    if exporter_type == "none":
        return None

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": "0.1.0",
        }
    )
    provider = TracerProvider(resource=resource)

    if exporter_type == "otlp":
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    return provider


def get_tracer(name: str = __name__) -> trace.Tracer:
    """Get a tracer instance for creating spans."""
    return trace.get_tracer(name)


def mask_secret(secret: str | None) -> str:
    """Show the first 6 and last 4 characters of an API key, mask the rest."""
    if not secret:
        return "<none>"

    if len(secret) <= 12:
        return "***"

    return f"{secret[:6]}...{secret[-4:]}"


def mask_email(email: str | None) -> str:
    """
    Mask an email address for PII protection.

    Handles display-name forms such as ``Alex <alex@tandem.space>``.
    """
    if not email:
        return "<none>"

    match = re.search(r"([^\s<@])([^\s<@]*)(@[^\s>]+)", email)
    if match:
        first_char, rest, domain = match.groups()
        return f"{first_char}{'*' * min(len(rest), 5)}{domain}"

    return "***@***"


def redact_pii(text: str | None, max_length: int = 100) -> str:
    """Truncate free text (email bodies, drafts, instructions) for logs and spans."""
    if not text:
        return "<empty>"

    if len(text) > max_length:
        text = text[:max_length] + "...[REDACTED]"

    # Long opaque strings are most likely keys or tokens
    return re.sub(r"[A-Za-z0-9_-]{40,}", "***TOKEN***", text)


def safe_span_attributes(**kwargs: Any) -> dict[str, Any]:
    """
    Create span attributes with automatic sanitization.

    - *key*, *secret*, *token* -> masked
    - *email*, *recipient*, *sender* -> masked address
    - *body*, *prompt*, *instruction* -> truncated
    """
    sanitized = {}

    for key, value in kwargs.items():
        if value is None:
            continue

        lowered = key.lower()
        if any(part in lowered for part in ("key", "secret", "token")) and not isinstance(value, int):
            sanitized[key] = mask_secret(str(value))
        elif any(part in lowered for part in ("email", "recipient", "sender")):
            sanitized[key] = mask_email(str(value))
        elif any(part in lowered for part in ("body", "prompt", "instruction")):
            sanitized[key] = redact_pii(str(value))
        elif isinstance(value, (str, int, float, bool)):
            sanitized[key] = value
        else:
            sanitized[key] = str(value)

    return sanitized
