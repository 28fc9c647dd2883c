"""Credential resolution for Google Compute Engine.

This module centralizes construction of the Compute Engine clients. It uses
Application Default Credentials as resolved by google-auth (environment,
gcloud user credentials or the metadata server) and only turns resolution
failures into a readable error. Authentication flows themselves stay with
google-auth and gcloud.
"""

from __future__ import annotations

import re

import google.auth
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import compute_v1

from gceops.core.adapters.gce import GceAdapter

_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


class AuthError(RuntimeError):
    """Raised when Google Cloud credentials cannot be resolved."""


def _format_auth_error(message: str) -> str:
    """Return a user-friendly auth error message."""
    if re.search(r"default credentials", message, re.IGNORECASE):
        return (
            "Google Cloud authentication failed. No Application Default Credentials found.\n"
            "Authenticate with:\n  $ gcloud auth application-default login"
        )
    return f"Google Cloud authentication failed: {message}"


def _sanitize_zone(zone: str | None) -> str | None:
    """
    Normalize a zone reference.

    - Accepts full resource paths (``projects/p/zones/europe-west1-b``)
    - Strips whitespace and trailing slashes

    so the value can be used directly in API calls.
    """
    if not zone:
        return zone
    zone = zone.strip().rstrip("/")
    return zone.rsplit("/", 1)[-1]


def get_adapter(project: str | None, zone: str | None) -> GceAdapter:
    """
    Create a GceAdapter using Application Default Credentials.

    If no project is given, the project associated with the credentials is
    used.

    Raises:
        AuthError: If credentials cannot be resolved, or if no project or zone
            is known.
    """
    try:
        credentials, default_project = google.auth.default(scopes=_SCOPES)
    except DefaultCredentialsError as exc:
        raise AuthError(_format_auth_error(str(exc))) from exc

    project = project or default_project
    if not project:
        raise AuthError("No Google Cloud project configured (set GCEOPS_PROJECT or --project).")
    zone = _sanitize_zone(zone)
    if not zone:
        raise AuthError("No Compute Engine zone configured (set GCEOPS_ZONE or --zone).")

    return GceAdapter(
        project,
        zone,
        instances_client=compute_v1.InstancesClient(credentials=credentials),
        operations_client=compute_v1.ZoneOperationsClient(credentials=credentials),
    )
