from datetime import date

import pytest
from pydantic import ValidationError

from customer_auth.api.schemas import (
    LangRequest,
    LoginRequest,
    RegisterRequest,
    SavedServiceRequest,
    parse_birth_date,
    parse_gender,
)
from customer_auth.config import Settings


class TestRegisterRequest:
    def test_phone_normalized_to_digits(self):
        """A leading plus is dropped and surrounding space trimmed."""
        body = RegisterRequest(name=" Alice ", phone=" +998901234567 ", password="secret1")

        assert body.phone == "998901234567"
        assert body.name == "Alice"
        assert body.trust is False

    @pytest.mark.parametrize("phone", ["12345", "+1234567890123456", "99890-123-45", "++998901234"])
    def test_bad_phone(self, phone):
        with pytest.raises(ValidationError):
            RegisterRequest(name="Alice", phone=phone, password="secret1")

    @pytest.mark.parametrize("name", ["Al", "x" * 65])
    def test_name_length(self, name):
        with pytest.raises(ValidationError):
            RegisterRequest(name=name, phone="998901234567", password="secret1")

    @pytest.mark.parametrize("password", ["abc12", "secret 12", "secret!1"])
    def test_password_rules(self, password):
        """Passwords need six or more letters or digits and nothing else."""
        with pytest.raises(ValidationError):
            RegisterRequest(name="Alice", phone="998901234567", password=password)


class TestOtherRequests:
    def test_login_blank_credentials_become_none(self):
        body = LoginRequest(phone="998901234567", password="  ", otp="")

        assert body.password is None
        assert body.otp is None

    def test_login_numbers_become_digit_strings(self):
        body = LoginRequest(phone=998901234567, otp=123456)

        assert body.phone == "998901234567"
        assert body.otp == "123456"

    def test_boolean_phone_rejected(self):
        with pytest.raises(ValidationError):
            LoginRequest(phone=True)

    def test_lang_values(self):
        assert LangRequest(lang="RU").lang == "ru"
        with pytest.raises(ValidationError):
            LangRequest(lang="de")

    def test_saved_service_alias(self):
        assert SavedServiceRequest(serviceId="svc-1").service_id == "svc-1"
        with pytest.raises(ValidationError):
            SavedServiceRequest(serviceId="")


class TestProfileFormParsing:
    def test_birth_date_format(self):
        assert parse_birth_date("17/05/1990") == date(1990, 5, 17)
        assert parse_birth_date("") is None
        with pytest.raises(ValueError):
            parse_birth_date("1990-05-17")

    def test_gender(self):
        assert parse_gender("f") == "F"
        assert parse_gender(None) is None
        with pytest.raises(ValueError):
            parse_gender("X")


class TestSettings:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("OTP_TTL_SECONDS", "30")
        monkeypatch.setenv("API_URL", "https://api.example/")

        settings = Settings.from_env()

        assert settings.otp_ttl_seconds == 30
        assert settings.api_url == "https://api.example"

    def test_non_positive_ttl_rejected(self, monkeypatch):
        monkeypatch.setenv("SESSION_TTL_MINUTES", "0")

        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_defaults(self):
        settings = Settings()

        assert settings.session_ttl_minutes == 60
        assert settings.otp_ttl_seconds == 120
        assert settings.lockout_block_seconds == 60
        assert settings.expose_otp_endpoint is False
