import pytest
from types import SimpleNamespace
from fastapi.testclient import TestClient

from carelink.core.edge_filter import (
    EdgeAuthorizationFilter, EdgeOutcome, PathClass, SECURITY_HEADERS
)
from carelink.core.security import TokenService, UserRole

from .conftest import FakeClock, START, TEST_PASSWORD

user = SimpleNamespace(id=7, email="edge@example.com", name="Edge", role=UserRole.PATIENT)


@pytest.fixture
def edge_clock():
    return FakeClock(START)


@pytest.fixture
def tokens(edge_clock):
    return TokenService("edge-secret", clock=edge_clock)


@pytest.fixture
def edge(tokens):
    # Built from the token service alone: no store is reachable from here
    return EdgeAuthorizationFilter(tokens)


class TestClassification:

    @pytest.mark.parametrize("path,expected", [
        ("/", PathClass.PUBLIC),
        ("/health", PathClass.PUBLIC),
        ("/resources", PathClass.PUBLIC),
        ("/login", PathClass.AUTH_ONLY),
        ("/signup/doctor", PathClass.AUTH_ONLY),
        ("/appointments", PathClass.PROTECTED),
        ("/appointments/new", PathClass.PROTECTED),
        ("/doctors", PathClass.PROTECTED),
        ("/chat", PathClass.PROTECTED),
        ("/profile", PathClass.PROTECTED),
        ("/appointmentsx", PathClass.PUBLIC),
        ("/api/v1/appointments", PathClass.PROTECTED_API),
        ("/api/v1/doctors/3/availability", PathClass.PROTECTED_API),
        ("/api/v1/auth/login", PathClass.PUBLIC),
        ("/api/v1/auth/check", PathClass.PUBLIC),
        ("/api/v1/info", PathClass.PUBLIC),
        ("/api/v1/openapi.json", PathClass.PUBLIC),
    ])
    def test_classify(self, edge, path, expected):
        assert edge.classify(path) == expected


class TestDecisionTable:

    def test_public_passes_with_or_without_token(self, edge, tokens):
        assert edge.decide("/", None).outcome == EdgeOutcome.PASS
        assert edge.decide("/", tokens.issue(user)).outcome == EdgeOutcome.PASS
        assert edge.decide("/", "garbage").outcome == EdgeOutcome.PASS

    def test_auth_only_with_valid_token_redirects_home(self, edge, tokens):
        decision = edge.decide("/login", tokens.issue(user))
        assert decision.outcome == EdgeOutcome.REDIRECT_HOME
        assert decision.location == "/"

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_auth_only_without_valid_token_passes(self, edge, token):
        assert edge.decide("/signup", token).outcome == EdgeOutcome.PASS

    @pytest.mark.parametrize("path", ["/appointments", "/api/v1/appointments"])
    def test_protected_with_valid_token_passes(self, edge, tokens, path):
        assert edge.decide(path, tokens.issue(user)).outcome == EdgeOutcome.PASS

    @pytest.mark.parametrize("path", ["/appointments/12", "/api/v1/appointments"])
    def test_protected_without_token_redirects_to_login(self, edge, path):
        decision = edge.decide(path, None)
        assert decision.outcome == EdgeOutcome.REDIRECT_LOGIN
        assert decision.location.startswith("/login?redirect=")

    def test_login_redirect_preserves_path(self, edge):
        decision = edge.decide("/appointments/12", None)
        assert decision.location == "/login?redirect=%2Fappointments%2F12"

    def test_expired_token_is_unauthenticated(self, edge, tokens, edge_clock):
        token = tokens.issue(user)
        edge_clock.advance(days=7, seconds=1)

        assert edge.decide("/chat", token).outcome == EdgeOutcome.REDIRECT_LOGIN
        assert edge.decide("/login", token).outcome == EdgeOutcome.PASS


class TestEdgeMiddleware:

    def test_protected_page_redirects_to_login(self, client):
        response = client.get("/appointments", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/login?redirect=%2Fappointments"

    def test_protected_api_without_token_is_401(self, client):
        response = client.get("/api/v1/appointments")

        assert response.status_code == 401
        data = response.json()
        assert data["error"] == "Not authenticated"
        assert data["login_url"] == "/login?redirect=%2Fapi%2Fv1%2Fappointments"

    def test_protected_api_with_bad_token_is_401(self, client):
        response = client.get(
            "/api/v1/appointments", headers={"Authorization": "Bearer nonsense"}
        )
        assert response.status_code == 401

    def test_login_page_redirects_home_when_authenticated(self, client, factory):
        patient = factory.patient()

        response = client.get("/login", headers=patient.headers, follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/"

    def test_session_cookie_is_accepted(self, client, factory):
        patient = factory.patient()
        login = client.post(
            "/api/v1/auth/login",
            json={"email": patient.email, "password": TEST_PASSWORD},
        )
        assert login.status_code == 200

        response = client.get("/api/v1/appointments")

        assert response.status_code == 200

    @pytest.mark.parametrize("path", ["/health", "/api/v1/appointments", "/appointments"])
    def test_security_headers_on_every_response(self, client, path):
        response = client.get(path, follow_redirects=False)

        for header, value in SECURITY_HEADERS.items():
            assert response.headers[header] == value

    def test_security_headers_on_unhandled_errors(self, app):
        def explode():
            raise RuntimeError("store went away")

        app.add_api_route("/explode", explode)
        failing_client = TestClient(app, raise_server_exceptions=False)

        response = failing_client.get("/explode")

        assert response.status_code == 500
        assert response.json()["error"] == "Internal Server Error"
        for header, value in SECURITY_HEADERS.items():
            assert response.headers[header] == value
