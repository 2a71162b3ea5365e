#!/usr/bin/env python3
"""
Access Control Tests
Tests role-based menus, credential checking and session handling.
"""

import json
import pytest
from datetime import datetime, timedelta

from werkzeug.security import generate_password_hash

from access_control import (
    CredentialTableAuthenticator, Principal, Role, build_authenticator, visible_menu,
)
from config import TestingConfig


def menu_ids(role):
    return [item.id for item in visible_menu(role)]


class TestMenu:
    """Menu entries depend only on the role."""

    def test_admin_sees_everything(self):
        assert menu_ids(Role.ADMIN) == ['dashboard', 'input', 'list', 'reports', 'sdd']

    @pytest.mark.parametrize('role', [Role.BENDAHARA_PENGELUARAN, Role.BENDAHARA_PENERIMAAN])
    def test_bendahara(self, role):
        assert menu_ids(role) == ['dashboard', 'input', 'list', 'reports']

    def test_verifikator_cannot_input(self):
        assert menu_ids(Role.VERIFIKATOR) == ['dashboard', 'list', 'reports']

    def test_role_given_as_text(self):
        assert menu_ids('VERIFIKATOR') == menu_ids(Role.VERIFIKATOR)

    def test_no_role_no_menu(self):
        assert visible_menu(None) == []


@pytest.mark.security
class TestAuthenticator:
    """Test credential checking."""

    @pytest.mark.parametrize('username, password, role', [
        ('admin', 'admin123', Role.ADMIN),
        ('bendahara_pengeluaran', 'ben123', Role.BENDAHARA_PENGELUARAN),
        ('bendahara_penerimaan', 'ben123', Role.BENDAHARA_PENERIMAAN),
        ('verifikator', 'cek123', Role.VERIFIKATOR),
    ])
    def test_demo_accounts(self, authenticator, username, password, role):
        principal = authenticator.authenticate(username, password)

        assert principal is not None
        assert principal.username == username
        assert principal.role is role

    def test_wrong_password(self, authenticator):
        assert authenticator.authenticate('admin', 'ben123') is None

    def test_unknown_user(self, authenticator):
        assert authenticator.authenticate('tamu', 'admin123') is None

    def test_passwords_are_not_stored_in_clear(self, authenticator):
        for entry in authenticator._users.values():
            assert entry['password_hash'] not in ('admin123', 'ben123', 'cek123')

    def test_from_file(self, tmp_path):
        users_file = tmp_path / 'users.json'
        users_file.write_text(json.dumps({
            'kasubag': {'display_name': 'Kasubag TU', 'role': 'VERIFIKATOR',
                        'password_hash': generate_password_hash('s3cret')},
        }))

        authenticator = CredentialTableAuthenticator.from_file(str(users_file))

        assert authenticator.authenticate('kasubag', 's3cret') == Principal('kasubag', 'Kasubag TU', Role.VERIFIKATOR)
        assert authenticator.authenticate('admin', 'admin123') is None

    def test_unknown_role_in_file(self):
        with pytest.raises(ValueError):
            CredentialTableAuthenticator({'x': {'role': 'SUPERUSER', 'password_hash': 'h'}})

    def test_build_without_users_file_uses_demo_accounts(self):
        authenticator = build_authenticator(TestingConfig())

        assert authenticator.authenticate('verifikator', 'cek123') is not None

    def test_principal_to_dict(self):
        data = Principal('admin', 'Admin', Role.ADMIN).to_dict()

        assert data == {'username': 'admin', 'display_name': 'Admin', 'role': 'ADMIN'}


@pytest.mark.security
class TestSessionEndpoints:
    """Test login, logout and session expiry over HTTP."""

    def test_login_returns_user_and_menu(self, client):
        response = client.post('/api/login', json={'username': 'verifikator', 'password': 'cek123'})

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['user']['role'] == 'VERIFIKATOR'
        assert data['menu'] == ['dashboard', 'list', 'reports']

    def test_bad_credentials(self, client):
        response = client.post('/api/login', json={'username': 'admin', 'password': 'salah'})

        assert response.status_code == 401
        assert response.get_json()['error_code'] == 'UNAUTHORIZED'
        assert client.get('/api/me').status_code == 401

    def test_login_validation(self, client):
        response = client.post('/api/login', json={'username': '', 'password': ''})

        assert response.status_code == 422

    def test_me(self, admin_client):
        response = admin_client.get('/api/me')

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['user']['username'] == 'admin'
        assert [m['id'] for m in data['menu']] == ['dashboard', 'input', 'list', 'reports', 'sdd']

    def test_me_requires_session(self, client):
        assert client.get('/api/me').status_code == 401

    def test_logout(self, admin_client):
        assert admin_client.post('/api/logout').status_code == 200

        assert admin_client.get('/api/me').status_code == 401

    def test_idle_session_expires(self, admin_client):
        with admin_client.session_transaction() as sess:
            sess['last_activity'] = (datetime.now() - timedelta(minutes=61)).isoformat()

        assert admin_client.get('/api/me').status_code == 401

    def test_old_session_expires(self, admin_client):
        with admin_client.session_transaction() as sess:
            sess['created_at'] = (datetime.now() - timedelta(hours=25)).isoformat()

        assert admin_client.get('/api/stats').status_code == 401

    def test_login_replaces_previous_session(self, client):
        client.post('/api/login', json={'username': 'admin', 'password': 'admin123'})
        client.post('/api/login', json={'username': 'verifikator', 'password': 'cek123'})

        assert client.get('/api/me').get_json()['data']['user']['username'] == 'verifikator'
        assert client.get('/api/activity-log').status_code == 403
