from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol

from customer_auth.service.common import DEFAULT_STORE_TIMEOUT, run_blocking
from customer_auth.service.errors import IdentityNotFound
from customer_auth.storage.models import Customer, TrustedDevice


class LoginMethod(str, Enum):
    PASSWORD = "password"
    OTP = "otp"


class DeviceLookup(Protocol):
    def get_customer_by_phone(self, phone: str) -> Optional[Customer]: ...

    def get_trusted_device(self, device_id: str, phone: str) -> Optional[TrustedDevice]: ...


class AuthDecisionEngine:
    """Pick the credential a login must present: OTP on trusted devices, else password."""

    def __init__(self, repository: DeviceLookup, *, timeout: float = DEFAULT_STORE_TIMEOUT) -> None:
        self.repository = repository
        self.timeout = timeout

    async def determine_method(self, phone: str, device_id: Optional[str]) -> LoginMethod:
        customer = await run_blocking(
            self.repository.get_customer_by_phone,
            phone,
            timeout=self.timeout,
            operation="customer_lookup",
        )
        if not customer:
            raise IdentityNotFound()
        return await self.method_for(customer, device_id)

    async def method_for(self, customer: Customer, device_id: Optional[str]) -> LoginMethod:
        if not device_id:
            return LoginMethod.PASSWORD
        device = await run_blocking(
            self.repository.get_trusted_device,
            device_id,
            customer.phone,
            timeout=self.timeout,
            operation="trusted_device_lookup",
        )
        return LoginMethod.OTP if device else LoginMethod.PASSWORD
