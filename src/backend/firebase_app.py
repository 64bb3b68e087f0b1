from __future__ import annotations

"""Firebase app and Firestore client bootstrap for the practice store."""

from typing import Dict, Optional, Tuple
import os

import firebase_admin
from firebase_admin import credentials, firestore
from google.auth.credentials import AnonymousCredentials

from src.backend.logging_utils import get_logger

logger = get_logger(__name__)

PRACTICE_APP_NAME = "practice"
# The emulator accepts any project id but the client refuses to start without one.
EMULATOR_PROJECT_ID = "demo-practice"

_app: Optional[firebase_admin.App] = None
_clients: Dict[Tuple[Optional[str], Optional[str]], firestore.Client] = {}


def _using_emulator() -> bool:
    return bool(os.getenv("FIRESTORE_EMULATOR_HOST"))


def _resolve_project_id(explicit: Optional[str] = None) -> Optional[str]:
    project_id = (
        explicit
        or os.getenv("GOOGLE_CLOUD_PROJECT")
        or os.getenv("GCLOUD_PROJECT")
        or os.getenv("PROJECT_ID")
    )
    if not project_id and _using_emulator():
        return EMULATOR_PROJECT_ID
    return project_id


def initialize_firebase_app(project_id: Optional[str] = None) -> firebase_admin.App:
    """Return the app the practice store talks through, creating it once.

    The app is registered under its own name so it never collides with a
    default app another component of the process may own.
    """
    global _app
    if _app is not None:
        return _app
    try:
        _app = firebase_admin.get_app(PRACTICE_APP_NAME)
        return _app
    except ValueError:
        # Not registered yet.
        pass
    options = {}
    resolved_project = _resolve_project_id(project_id)
    if resolved_project:
        options["projectId"] = resolved_project
    service_account_path = os.getenv("FIREBASE_SERVICE_ACCOUNT_FILE")
    if service_account_path:
        credential = credentials.Certificate(service_account_path)
        source = "service_account"
    elif _using_emulator():
        credential = AnonymousCredentials()
        source = "emulator"
    else:
        credential = None
        source = "application_default"
    _app = firebase_admin.initialize_app(credential, options or None, name=PRACTICE_APP_NAME)
    logger.info("firebase_app_initialized project=%s credentials=%s", resolved_project, source)
    return _app


def get_firestore_client(
    project_id: Optional[str] = None,
    database_id: Optional[str] = None,
) -> firestore.Client:
    """Cached Firestore client for one project and database."""
    key = (_resolve_project_id(project_id), database_id or None)
    client = _clients.get(key)
    if client is None:
        app = initialize_firebase_app(project_id)
        client = firestore.client(app, database_id=database_id or None)
        _clients[key] = client
        logger.debug("firestore_client_created project=%s database=%s", key[0], key[1] or "(default)")
    return client


def reset_firebase_state() -> None:
    """Forget the cached app and clients so the next call rebuilds them."""
    global _app
    _app = None
    _clients.clear()
