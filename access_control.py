#!/usr/bin/env python3
"""
Authentication, role-based menu filtering and session management.

Credential checking lives behind the ``Authenticator`` interface; everything
else (menus, route guards) only looks at the ``Role`` of the current user.
"""

import json
import logging
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from enum import Enum
from functools import wraps
from typing import Dict, List, Optional

from flask import session, current_app
from werkzeug.security import generate_password_hash, check_password_hash

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = 'ADMIN'
    BENDAHARA_PENGELUARAN = 'BENDAHARA_PENGELUARAN'
    BENDAHARA_PENERIMAAN = 'BENDAHARA_PENERIMAAN'
    VERIFIKATOR = 'VERIFIKATOR'


ALL_ROLES = tuple(Role)

# Roles that may create new claims
CREATOR_ROLES = (Role.ADMIN, Role.BENDAHARA_PENGELUARAN, Role.BENDAHARA_PENERIMAAN)


@dataclass(frozen=True)
class MenuItem:
    id: str
    label: str
    roles: tuple


MENU_ITEMS = (
    MenuItem('dashboard', 'Dashboard', ALL_ROLES),
    MenuItem('input', 'Input SPJ Baru', CREATOR_ROLES),
    MenuItem('list', 'Data SPJ', ALL_ROLES),
    MenuItem('reports', 'Laporan', ALL_ROLES),
    MenuItem('sdd', 'System Design', (Role.ADMIN,)),
)


def visible_menu(role: Optional[Role]) -> List[MenuItem]:
    """Menu entries the given role may see, in display order."""
    if role is None:
        return []
    role = Role(role)
    return [item for item in MENU_ITEMS if role in item.roles]


@dataclass
class Principal:
    """An authenticated user."""
    username: str
    display_name: str
    role: Role

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['role'] = self.role.value
        return data


class Authenticator:
    """Checks credentials and returns the matching principal, or None."""

    def authenticate(self, username: str, password: str) -> Optional[Principal]:
        raise NotImplementedError


# Built-in accounts, for development and testing only
DEMO_ACCOUNTS = {
    'admin': ('Admin', Role.ADMIN, 'admin123'),
    'bendahara_pengeluaran': ('Bendahara Pengeluaran', Role.BENDAHARA_PENGELUARAN, 'ben123'),
    'bendahara_penerimaan': ('Bendahara Penerimaan', Role.BENDAHARA_PENERIMAAN, 'ben123'),
    'verifikator': ('Verifikator SPJ', Role.VERIFIKATOR, 'cek123'),
}


class CredentialTableAuthenticator(Authenticator):
    """
    Username table with salted password hashes.

    Table entries are ``username -> {display_name, role, password_hash}``.
    """

    def __init__(self, users: Dict[str, Dict[str, str]]):
        self._users = {}
        for username, entry in users.items():
            self._users[username] = {
                'display_name': entry.get('display_name', username),
                'role': Role(entry['role']),
                'password_hash': entry['password_hash'],
            }

    @classmethod
    def from_file(cls, path: str) -> 'CredentialTableAuthenticator':
        with open(path, 'r', encoding='utf-8') as f:
            return cls(json.load(f))

    @classmethod
    def with_demo_accounts(cls) -> 'CredentialTableAuthenticator':
        return cls({
            username: {
                'display_name': display_name,
                'role': role.value,
                'password_hash': generate_password_hash(password),
            }
            for username, (display_name, role, password) in DEMO_ACCOUNTS.items()
        })

    def authenticate(self, username: str, password: str) -> Optional[Principal]:
        entry = self._users.get(username)
        if entry is None or not check_password_hash(entry['password_hash'], password):
            logger.warning(f"Rejected login for username {username!r}")
            return None
        return Principal(username=username, display_name=entry['display_name'], role=entry['role'])


def build_authenticator(config) -> Authenticator:
    """Users file when configured, otherwise the demo accounts."""
    if config.USERS_FILE:
        logger.info(f"Loading users from {config.USERS_FILE}")
        return CredentialTableAuthenticator.from_file(config.USERS_FILE)
    logger.warning("USERS_FILE not set; using demo accounts")
    return CredentialTableAuthenticator.with_demo_accounts()


class SessionManager:
    """Secure session management."""

    @staticmethod
    def create_session(principal: Principal) -> str:
        """Create a new session for an authenticated principal."""
        session.clear()
        session['user_id'] = principal.username
        session['display_name'] = principal.display_name
        session['role'] = principal.role.value
        session['created_at'] = datetime.now().isoformat()
        session['last_activity'] = datetime.now().isoformat()
        session['session_id'] = secrets.token_urlsafe(32)
        return session['session_id']

    @staticmethod
    def validate_session() -> bool:
        """Validate current session."""
        if 'user_id' not in session or 'role' not in session:
            return False

        # Check session age
        created_at = session.get('created_at')
        if not created_at:
            return False

        created_dt = datetime.fromisoformat(created_at)
        if datetime.now() - created_dt > timedelta(hours=24):
            return False

        # Check last activity
        lifetime = current_app.config.get('SESSION_LIFETIME_MINUTES', 60)
        last_activity = session.get('last_activity')
        if last_activity:
            last_dt = datetime.fromisoformat(last_activity)
            if datetime.now() - last_dt > timedelta(minutes=lifetime):
                return False

        # Update last activity
        session['last_activity'] = datetime.now().isoformat()

        return True

    @staticmethod
    def current_principal() -> Optional[Principal]:
        """The logged-in principal, or None when there is no valid session."""
        if not SessionManager.validate_session():
            return None
        return Principal(
            username=session['user_id'],
            display_name=session.get('display_name', session['user_id']),
            role=Role(session['role'])
        )

    @staticmethod
    def destroy_session():
        """Securely destroy the current session."""
        session.clear()


def require_session(f):
    """Decorator to require valid session."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from api_response import APIResponse

        if not SessionManager.validate_session():
            return APIResponse.unauthorized("Invalid or expired session")
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: Role):
    """Decorator to require a valid session whose role is one of ``roles``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            from api_response import APIResponse

            principal = SessionManager.current_principal()
            if principal is None:
                return APIResponse.unauthorized("Invalid or expired session")
            if principal.role not in roles:
                return APIResponse.forbidden(f"Role {principal.role.value} may not access this resource")
            return f(*args, **kwargs)
        return decorated_function
    return decorator


__all__ = [
    'Role',
    'ALL_ROLES',
    'CREATOR_ROLES',
    'MenuItem',
    'MENU_ITEMS',
    'visible_menu',
    'Principal',
    'Authenticator',
    'DEMO_ACCOUNTS',
    'CredentialTableAuthenticator',
    'build_authenticator',
    'SessionManager',
    'require_session',
    'require_role',
]
