import threading

import pytest
from fastapi import HTTPException

from carelink.models.user import User
from carelink.schemas.auth import UserRegister
from carelink.services.auth_service import AuthService

# Test data
test_user_data = {
    "email": "test@example.com",
    "password": "TestPassword123",
    "name": "Test User"
}

test_login_data = {
    "email": "test@example.com",
    "password": "TestPassword123"
}

test_doctor_data = {
    "email": "doc@example.com",
    "password": "DoctorPassword123",
    "name": "Dr. Test",
    "specialization": "Psychiatry",
    "working_days": ["Wednesday", "Mon"]
}


def login_headers(client, login_data=test_login_data):
    response = client.post("/api/v1/auth/login", json=login_data)
    client.cookies.clear()
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


class TestAuthentication:

    def test_register_user(self, client):
        """Test user registration."""
        response = client.post("/api/v1/auth/register", json=test_user_data)
        assert response.status_code == 201

        data = response.json()
        assert data["email"] == test_user_data["email"]
        assert data["role"] == "patient"
        assert data["verified"] is False
        assert "password" not in data
        assert "password_hash" not in data

    def test_register_duplicate_email(self, client):
        """Test registration with duplicate email."""
        client.post("/api/v1/auth/register", json=test_user_data)

        response = client.post("/api/v1/auth/register", json=test_user_data)
        assert response.status_code == 400
        assert "already registered" in response.json()["detail"]

    def test_register_invalid_password(self, client):
        """Test registration with invalid password."""
        invalid_data = test_user_data.copy()
        invalid_data["password"] = "weak"

        response = client.post("/api/v1/auth/register", json=invalid_data)
        assert response.status_code == 422

    def test_register_doctor_starts_unverified(self, client):
        response = client.post("/api/v1/auth/register/doctor", json=test_doctor_data)
        assert response.status_code == 201
        assert response.json()["role"] == "doctor"
        assert response.json()["verified"] is False

        headers = login_headers(client, {
            "email": test_doctor_data["email"],
            "password": test_doctor_data["password"]
        })
        me = client.get("/api/v1/auth/me", headers=headers).json()
        assert me["doctor_id"] is not None

    def test_register_doctor_unknown_weekday(self, client):
        invalid_data = dict(test_doctor_data, working_days=["Funday"])

        response = client.post("/api/v1/auth/register/doctor", json=invalid_data)
        assert response.status_code == 422

    def test_login_success(self, client):
        """Test successful login."""
        client.post("/api/v1/auth/register", json=test_user_data)

        response = client.post("/api/v1/auth/login", json=test_login_data)
        assert response.status_code == 200

        data = response.json()
        assert "access_token" in data
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 7 * 24 * 3600
        assert data["user"]["email"] == test_user_data["email"]
        assert response.cookies.get("token") == data["access_token"]

    def test_login_invalid_credentials(self, client):
        """Test login with invalid credentials."""
        invalid_login = {
            "email": "nonexistent@example.com",
            "password": "wrongpassword"
        }

        response = client.post("/api/v1/auth/login", json=invalid_login)
        assert response.status_code == 401

    def test_login_wrong_password(self, client):
        """Test login with wrong password."""
        client.post("/api/v1/auth/register", json=test_user_data)

        wrong_login = test_login_data.copy()
        wrong_login["password"] = "wrongpassword"

        response = client.post("/api/v1/auth/login", json=wrong_login)
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_get_current_user(self, client):
        """Test getting current user info."""
        client.post("/api/v1/auth/register", json=test_user_data)
        headers = login_headers(client)

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 200

        data = response.json()
        assert data["email"] == test_user_data["email"]
        assert data["doctor_id"] is None

    def test_get_current_user_invalid_token(self, client):
        """Test get current user with invalid token."""
        headers = {"Authorization": "Bearer invalid_token"}

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401

    def test_expired_token(self, client, clock):
        client.post("/api/v1/auth/register", json=test_user_data)
        headers = login_headers(client)

        clock.advance(days=7, seconds=1)

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired"

    def test_check_anonymous(self, client):
        response = client.get("/api/v1/auth/check")
        assert response.status_code == 200
        assert response.json() == {"authenticated": False, "user": None}

    def test_check_authenticated(self, client):
        client.post("/api/v1/auth/register", json=test_user_data)
        headers = login_headers(client)

        response = client.get("/api/v1/auth/check", headers=headers)
        assert response.json()["authenticated"] is True
        assert response.json()["user"]["email"] == test_user_data["email"]

    def test_logout(self, client):
        """Test user logout."""
        client.post("/api/v1/auth/register", json=test_user_data)
        client.post("/api/v1/auth/login", json=test_login_data)
        assert client.get("/api/v1/auth/check").json()["authenticated"] is True

        response = client.post("/api/v1/auth/logout")
        assert response.status_code == 200
        assert client.get("/api/v1/auth/check").json()["authenticated"] is False

    def test_change_password(self, client):
        """Test password change."""
        client.post("/api/v1/auth/register", json=test_user_data)
        headers = login_headers(client)

        password_data = {
            "current_password": "TestPassword123",
            "new_password": "NewPassword123"
        }

        response = client.post(
            "/api/v1/auth/change-password",
            json=password_data,
            headers=headers
        )
        assert response.status_code == 200

        relogin = client.post("/api/v1/auth/login", json={
            "email": test_user_data["email"],
            "password": "NewPassword123"
        })
        assert relogin.status_code == 200

    def test_change_password_wrong_current(self, client):
        """Test password change with wrong current password."""
        client.post("/api/v1/auth/register", json=test_user_data)
        headers = login_headers(client)

        password_data = {
            "current_password": "WrongPassword",
            "new_password": "NewPassword123"
        }

        response = client.post(
            "/api/v1/auth/change-password",
            json=password_data,
            headers=headers
        )
        assert response.status_code == 400

    def test_rate_limit(self, client, settings):
        """Credential endpoints stop answering after the configured number of calls."""
        for _ in range(settings.RATE_LIMIT_REQUESTS):
            client.post("/api/v1/auth/login", json=test_login_data)

        response = client.post("/api/v1/auth/login", json=test_login_data)
        assert response.status_code == 429


class TestConcurrentRegistration:

    def test_same_email_twice_admits_one(self, app):
        barrier = threading.Barrier(2)
        outcomes = []
        errors = []
        lock = threading.Lock()

        def attempt():
            session = app.state.database.session()
            try:
                service = AuthService(session, app.state.tokens)
                barrier.wait()
                try:
                    service.register_user(UserRegister(**test_user_data))
                    outcome = "ok"
                except HTTPException as exc:
                    outcome = exc.status_code
                with lock:
                    outcomes.append(outcome)
            except Exception as exc:  # surfaced through the assertion below
                with lock:
                    errors.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        assert sorted(outcomes, key=str) == [400, "ok"]

        session = app.state.database.session()
        try:
            assert session.query(User).filter(User.email == test_user_data["email"]).count() == 1
        finally:
            session.close()


if __name__ == "__main__":
    pytest.main([__file__])
