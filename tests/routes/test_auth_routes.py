import asyncio
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import HTTPException

from classroom.auth import jwt_handler, saml
from classroom.models.user import User
from classroom.routes import auth_routes


class _FakeUrl:
    def __init__(self, path: str, host: str):
        self.path = path
        self._host = host

    def __str__(self) -> str:
        return f'https://{self._host}{self.path}'


class _FakeRequest:
    def __init__(self, *, path: str, host: str = 'classroom.example.com', query_params=None, form_data=None):
        self.headers = {'host': host}
        self.url = _FakeUrl(path, host)
        self.query_params = query_params or {}
        self._form_data = form_data or {}

    async def form(self):
        return self._form_data


class _FakeSamlAuth:
    def __init__(self, *, errors=None, authenticated=True, attributes=None, name_id='saml-subject-1'):
        self._errors = errors or []
        self._authenticated = authenticated
        self._attributes = attributes or {}
        self._name_id = name_id

    def login(self):
        return 'https://idp.example.com/login'

    def logout(self):
        return 'https://idp.example.com/logout'

    def process_response(self):
        return None

    def get_errors(self):
        return self._errors

    def is_authenticated(self):
        return self._authenticated

    def get_attributes(self):
        return self._attributes

    def get_nameid(self):
        return self._name_id


@pytest.fixture
def fake_saml(monkeypatch: pytest.MonkeyPatch):
    captured: dict = {}

    def install(auth: _FakeSamlAuth) -> dict:
        def init_saml_auth(request_data):
            captured['request_data'] = request_data
            return auth

        monkeypatch.setattr(saml, 'init_saml_auth', init_saml_auth)
        return captured

    return install


def test_build_request_data_uses_request_path() -> None:
    payload = saml.build_request_data(
        url='https://classroom.example.com/auth/sso/acs',
        host='classroom.example.com',
        path='/auth/sso/acs',
        query_params={'relay': 'abc'},
        form_data={'SAMLResponse': 'xyz'},
    )

    assert payload == {
        'https': 'on',
        'http_host': 'classroom.example.com',
        'server_port': '443',
        'script_name': '/auth/sso/acs',
        'get_data': {'relay': 'abc'},
        'post_data': {'SAMLResponse': 'xyz'},
    }


def test_extract_identity_prefers_email_attribute_and_joins_names() -> None:
    email, full_name = saml.extract_identity(
        {'Email': [' Learner@Acme.Test '], 'FirstName': ['Lee'], 'LastName': ['Learner']},
        'name-id@acme.test',
    )

    assert email == 'learner@acme.test'
    assert full_name == 'Lee Learner'


def test_extract_identity_falls_back_to_name_id() -> None:
    assert saml.extract_identity({}, 'Someone@Acme.Test') == ('someone@acme.test', None)


def test_sso_login_redirects_to_identity_provider(fake_saml) -> None:
    captured = fake_saml(_FakeSamlAuth())

    response = asyncio.run(auth_routes.sso_login(_FakeRequest(path='/auth/sso/login')))

    assert response.status_code == 307
    assert response.headers['location'] == 'https://idp.example.com/login'
    assert captured['request_data']['script_name'] == '/auth/sso/login'


def test_sso_acs_provisions_user_and_returns_token(fake_saml, classroom_db, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth_routes.config, 'FRONTEND_SSO_REDIRECT_URL', '')
    fake_saml(_FakeSamlAuth(attributes={'Email': ['new@acme.test'], 'FirstName': ['New'], 'LastName': ['Person']}))

    payload = asyncio.run(auth_routes.sso_acs(_FakeRequest(path='/auth/sso/acs'), db=classroom_db))

    user = classroom_db.query(User).filter(User.email == 'new@acme.test').one()
    assert user.full_name == 'New Person'
    assert user.sso_subject == 'saml-subject-1'
    assert payload['token_type'] == 'bearer'
    assert jwt_handler.decode_access_token(payload['access_token'])['sub'] == str(user.id)


def test_sso_acs_links_existing_user(fake_saml, workspace, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth_routes.config, 'FRONTEND_SSO_REDIRECT_URL', '')
    fake_saml(_FakeSamlAuth(attributes={'Email': ['student@acme.test']}, name_id='student-subject'))

    payload = asyncio.run(auth_routes.sso_acs(_FakeRequest(path='/auth/sso/acs'), db=workspace.db))

    assert workspace.db.query(User).filter(User.email == 'student@acme.test').count() == 1
    assert workspace.student.sso_subject == 'student-subject'
    assert workspace.student.full_name == 'Sam Student'
    assert jwt_handler.decode_access_token(payload['access_token'])['sub'] == str(workspace.student.id)


def test_sso_acs_redirects_to_frontend_with_token(fake_saml, classroom_db, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(auth_routes.config, 'FRONTEND_SSO_REDIRECT_URL', 'https://app.example.com/sso?next=classroom')
    fake_saml(_FakeSamlAuth(attributes={'Email': ['new@acme.test']}))

    response = asyncio.run(auth_routes.sso_acs(_FakeRequest(path='/auth/sso/acs'), db=classroom_db))

    assert response.status_code == 302
    query = parse_qs(urlparse(response.headers['location']).query)
    assert query['next'] == ['classroom']
    assert query['token_type'] == ['bearer']
    assert jwt_handler.decode_access_token(query['access_token'][0])['sub'].isdigit()


def test_sso_acs_returns_400_when_saml_errors_exist(fake_saml, classroom_db) -> None:
    fake_saml(_FakeSamlAuth(errors=['invalid_response'], authenticated=False))

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(auth_routes.sso_acs(_FakeRequest(path='/auth/sso/acs'), db=classroom_db))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == {'saml_errors': ['invalid_response']}


def test_sso_acs_returns_401_for_unauthenticated_response(fake_saml, classroom_db) -> None:
    fake_saml(_FakeSamlAuth(authenticated=False))

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(auth_routes.sso_acs(_FakeRequest(path='/auth/sso/acs'), db=classroom_db))

    assert exception_info.value.status_code == 401


def test_sso_acs_requires_an_email(fake_saml, classroom_db) -> None:
    fake_saml(_FakeSamlAuth(attributes={}, name_id=None))

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(auth_routes.sso_acs(_FakeRequest(path='/auth/sso/acs'), db=classroom_db))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Email not found in SAML response'
