from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from customer_auth.logging import get_logger
from customer_auth.service.assets import ImageStorage, UploadedImage
from customer_auth.service.common import DEFAULT_STORE_TIMEOUT, Clock, run_blocking, utcnow
from customer_auth.service.credentials import CredentialHasher
from customer_auth.service.decision import AuthDecisionEngine, LoginMethod
from customer_auth.service.errors import (
    AlreadyRegistered,
    AuthenticationError,
    ExpiredOtp,
    IdentityNotFound,
    UserBlocked,
    ValidationFailed,
    WrongOtp,
    WrongPassword,
)
from customer_auth.service.lockout import LockoutPolicy
from customer_auth.service.otp import OtpOutcome, OtpService
from customer_auth.service.sessions import SessionManager
from customer_auth.storage.errors import ConstraintViolation
from customer_auth.storage.models import Customer, TrustedDevice

logger = get_logger(__name__)

T = TypeVar("T")

CUSTOMER_ROLE = "customer"
SUPPORTED_LANGUAGES = ("en", "ru", "uz")
GENDERS = ("M", "F")


class IdentityRepository(Protocol):
    def get_customer(self, customer_id: str) -> Optional[Customer]: ...

    def get_customer_by_phone(self, phone: str) -> Optional[Customer]: ...

    def create_customer(self, name: str, phone: str, hashed_password: str) -> Customer: ...

    def update_customer(self, customer: Customer) -> Optional[Customer]: ...

    def update_customer_lang(self, customer_id: str, lang: str) -> bool: ...

    def delete_customer(self, customer_id: str) -> bool: ...

    def create_trusted_device(self, customer_id: str, device_id: str) -> TrustedDevice: ...

    def get_trusted_device(self, device_id: str, phone: str) -> Optional[TrustedDevice]: ...

    def add_saved_service(self, customer_id: str, service_id: str) -> None: ...

    def remove_saved_service(self, customer_id: str, service_id: str) -> bool: ...

    def list_saved_services(self, customer_id: str) -> List[str]: ...


@dataclass
class AuthContext:
    customer_id: str
    role: str
    token: Optional[str] = None


class CustomerService:
    """Customer-facing flows: registration, login, profile and preferences.

    Each flow is a straight sequence of fallible steps. Validation and
    lookups run before anything is written; once a step has mutated state,
    a failure further on is compensated before the original error is raised.
    """

    def __init__(
        self,
        repository: IdentityRepository,
        *,
        hasher: CredentialHasher,
        otp: OtpService,
        lockout: LockoutPolicy,
        decision: AuthDecisionEngine,
        sessions: SessionManager,
        images: ImageStorage,
        clock: Optional[Clock] = None,
        timeout: float = DEFAULT_STORE_TIMEOUT,
    ) -> None:
        self.repository = repository
        self.hasher = hasher
        self.otp = otp
        self.lockout = lockout
        self.decision = decision
        self.sessions = sessions
        self.images = images
        self._now = clock or utcnow
        self.timeout = timeout
        self.logger = logger

    async def _repo(self, func: Callable[..., T], *args: Any, operation: str) -> T:
        return await run_blocking(func, *args, timeout=self.timeout, operation=operation)

    async def _get_customer(self, customer_id: str) -> Customer:
        customer = await self._repo(
            self.repository.get_customer, customer_id, operation="customer_lookup"
        )
        if not customer:
            raise IdentityNotFound()
        return customer

    # sessions
    async def authenticate(
        self, token: Optional[str], *, required_role: str = CUSTOMER_ROLE
    ) -> AuthContext:
        record = await self.sessions.validate(token) if token else None
        if not record:
            raise AuthenticationError("invalid or expired session")
        if record.role != required_role:
            self.logger.warning(
                "session_role_mismatch", customer_id=record.customer_id, role=record.role
            )
            raise AuthenticationError("session not valid for this resource")
        return AuthContext(customer_id=record.customer_id, role=record.role, token=token)

    async def logout(self, customer_id: str) -> bool:
        return await self.sessions.revoke_all(customer_id)

    # registration
    async def register(
        self,
        *,
        name: str,
        phone: str,
        password: str,
        trust: bool = False,
        device_id: Optional[str] = None,
    ) -> str:
        """Create a customer and return its first session token."""
        if trust and not device_id:
            raise ValidationFailed(
                "device id is required to trust a device",
                detail={"device_id": "required when trust is set"},
            )
        existing = await self._repo(
            self.repository.get_customer_by_phone, phone, operation="customer_lookup"
        )
        if existing:
            raise AlreadyRegistered()

        hashed = await asyncio.to_thread(self.hasher.hash, password)
        try:
            customer = await self._repo(
                self.repository.create_customer, name, phone, hashed, operation="customer_create"
            )
        except ConstraintViolation as exc:
            raise AlreadyRegistered() from exc

        try:
            token = await self.sessions.issue(customer.id, CUSTOMER_ROLE)
            if trust:
                await self._repo(
                    self.repository.create_trusted_device,
                    customer.id,
                    device_id,
                    operation="trusted_device_create",
                )
        except Exception as exc:
            self.logger.warning(
                "registration_failed_rolling_back",
                customer_id=customer.id,
                error_type=type(exc).__name__,
            )
            await self._rollback_registration(customer.id)
            raise

        self.logger.info("customer_registered", customer_id=customer.id, trusted_device=trust)
        return token

    async def _rollback_registration(self, customer_id: str) -> None:
        try:
            await self.sessions.revoke_all(customer_id)
        except Exception as exc:
            self.logger.error(
                "registration_rollback_failed",
                step="revoke_session",
                customer_id=customer_id,
                error=str(exc),
            )
        try:
            await self._repo(
                self.repository.delete_customer, customer_id, operation="customer_delete"
            )
        except Exception as exc:
            self.logger.error(
                "registration_rollback_failed",
                step="delete_customer",
                customer_id=customer_id,
                error=str(exc),
            )

    # login
    async def get_login_method(self, phone: str, device_id: Optional[str]) -> LoginMethod:
        """Tell the client which credential to collect, sending an OTP when needed."""
        method = await self.decision.determine_method(phone, device_id)
        if method is LoginMethod.OTP:
            await self.otp.issue(phone)
        return method

    async def login(
        self,
        *,
        phone: str,
        device_id: Optional[str],
        password: Optional[str] = None,
        otp: Optional[str] = None,
        trust: bool = False,
    ) -> str:
        if not device_id:
            raise ValidationFailed("device id is required", detail={"device_id": "required"})
        customer = await self._repo(
            self.repository.get_customer_by_phone, phone, operation="customer_lookup"
        )
        if not customer:
            raise IdentityNotFound()

        gate = await self.lockout.check(phone)
        if gate.blocked:
            raise UserBlocked(gate.seconds_remaining)

        method = await self.decision.method_for(customer, device_id)
        if method is LoginMethod.PASSWORD and not password:
            raise ValidationFailed("password is required", detail={"password": "required"})
        if method is LoginMethod.OTP and not otp:
            raise ValidationFailed("one-time code is required", detail={"otp": "required"})

        if method is LoginMethod.PASSWORD:
            accepted = await asyncio.to_thread(
                self.hasher.verify, customer.hashed_password, password
            )
        else:
            outcome = await self.otp.validate(phone, otp)
            if outcome is OtpOutcome.EXPIRED:
                raise ExpiredOtp()
            accepted = outcome is OtpOutcome.VALID

        decision = await self.lockout.record_outcome(phone, accepted)
        if not accepted:
            self.logger.warning(
                "login_failed",
                customer_id=customer.id,
                method=method.value,
                outcome=decision.outcome.value,
            )
            if decision.blocked:
                raise UserBlocked(decision.seconds_remaining)
            raise WrongPassword() if method is LoginMethod.PASSWORD else WrongOtp()

        if trust:
            await self._repo(
                self.repository.create_trusted_device,
                customer.id,
                device_id,
                operation="trusted_device_create",
            )
        token = await self.sessions.issue(customer.id, CUSTOMER_ROLE)
        self.logger.info("login_succeeded", customer_id=customer.id, method=method.value)
        return token

    # profile
    async def get_profile(self, customer_id: str) -> Dict[str, Any]:
        customer = await self._get_customer(customer_id)
        saved = await self._repo(
            self.repository.list_saved_services, customer_id, operation="saved_services_list"
        )
        return {
            "id": customer.id,
            "phone": customer.phone,
            "name": customer.name,
            "gender": customer.gender,
            "birth_date": customer.birth_date,
            "image_url": self.images.url_for(customer.image_url),
            "lang": customer.lang,
            "created_at": customer.created_at,
            "saved_services": saved,
        }

    def _validate_profile_fields(self, gender: Optional[str], birth_date: Optional[date]) -> None:
        errors: Dict[str, str] = {}
        if gender is not None and gender not in GENDERS:
            errors["gender"] = "must be one of M, F"
        if birth_date is not None and birth_date >= self._now().date():
            errors["birth_date"] = "must be in the past"
        if errors:
            raise ValidationFailed("invalid profile fields", detail=errors)

    async def update_profile(
        self,
        customer_id: str,
        *,
        name: Optional[str] = None,
        password: Optional[str] = None,
        delete_image: bool = False,
        gender: Optional[str] = None,
        birth_date: Optional[date] = None,
        avatar: Optional[UploadedImage] = None,
    ) -> Customer:
        """Apply profile changes, swapping the profile image safely.

        A new image is stored before the record changes and is removed again
        if the record write fails. The previous image is removed only once the
        record points away from it.
        """
        self._validate_profile_fields(gender, birth_date)
        customer = await self._get_customer(customer_id)
        old_image = customer.image_url
        hashed = (
            await asyncio.to_thread(self.hasher.hash, password)
            if password
            else customer.hashed_password
        )

        staged = await self.images.upload(avatar) if avatar is not None else None
        changes = replace(
            customer,
            name=name or customer.name,
            hashed_password=hashed,
            gender=gender or customer.gender,
            birth_date=birth_date or customer.birth_date,
            image_url=staged or (None if delete_image else old_image),
        )
        try:
            updated = await self._repo(
                self.repository.update_customer, changes, operation="customer_update"
            )
            if updated is None:
                raise IdentityNotFound()
        except Exception:
            if staged:
                await self._discard_image(staged, reason="rollback")
            raise

        if old_image and updated.image_url != old_image:
            await self._discard_image(old_image, reason="replaced")
        self.logger.info(
            "customer_profile_updated",
            customer_id=customer_id,
            image_changed=updated.image_url != old_image,
            credentials_changed=bool(password),
        )
        return updated

    async def _discard_image(self, name: str, *, reason: str) -> None:
        try:
            await self.images.delete(name)
        except Exception as exc:
            self.logger.error("asset_delete_failed", name=name, reason=reason, error=str(exc))

    async def update_lang(self, customer_id: str, lang: str) -> None:
        if lang not in SUPPORTED_LANGUAGES:
            raise ValidationFailed(
                "unsupported language", detail={"lang": f"must be one of {', '.join(SUPPORTED_LANGUAGES)}"}
            )
        updated = await self._repo(
            self.repository.update_customer_lang, customer_id, lang, operation="customer_update_lang"
        )
        if not updated:
            raise IdentityNotFound()

    # saved services
    @staticmethod
    def _clean_service_id(service_id: str) -> str:
        cleaned = (service_id or "").strip()
        if not cleaned:
            raise ValidationFailed("service id is required", detail={"service_id": "required"})
        return cleaned

    async def add_saved_service(self, customer_id: str, service_id: str) -> List[str]:
        cleaned = self._clean_service_id(service_id)
        try:
            await self._repo(
                self.repository.add_saved_service, customer_id, cleaned, operation="saved_service_add"
            )
        except ConstraintViolation as exc:
            raise IdentityNotFound() from exc
        return await self._repo(
            self.repository.list_saved_services, customer_id, operation="saved_services_list"
        )

    async def remove_saved_service(self, customer_id: str, service_id: str) -> bool:
        cleaned = self._clean_service_id(service_id)
        return await self._repo(
            self.repository.remove_saved_service,
            customer_id,
            cleaned,
            operation="saved_service_remove",
        )
