from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from customer_auth.logging import get_logger
from customer_auth.storage.errors import ConstraintViolation
from customer_auth.storage.models import Customer, TrustedDevice


class MemoryStore:
    """In-memory customer repository for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.customers: Dict[str, Customer] = {}
        self.devices: Dict[Tuple[str, str], TrustedDevice] = {}
        self.saved_services: Dict[str, List[str]] = {}
        # RLock so helpers can nest inside public methods
        self._data_lock = threading.RLock()

    # customers
    def get_customer(self, customer_id: str) -> Optional[Customer]:
        with self._data_lock:
            customer = self.customers.get(customer_id)
            return replace(customer) if customer else None

    def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        with self._data_lock:
            found = self._find_by_phone(phone)
            return replace(found) if found else None

    def _find_by_phone(self, phone: str) -> Optional[Customer]:
        for customer in self.customers.values():
            if customer.phone == phone:
                return customer
        return None

    def create_customer(self, name: str, phone: str, hashed_password: str) -> Customer:
        with self._data_lock:
            if self._find_by_phone(phone):
                raise ConstraintViolation("phone already exists", {"field": "phone"})
            customer = Customer.new(name=name, phone=phone, hashed_password=hashed_password)
            self.customers[customer.id] = customer
            self.logger.info("customer_created", customer_id=customer.id)
            return replace(customer)

    def update_customer(self, customer: Customer) -> Optional[Customer]:
        with self._data_lock:
            current = self.customers.get(customer.id)
            if not current:
                return None
            updated = replace(
                current,
                name=customer.name,
                hashed_password=customer.hashed_password,
                gender=customer.gender,
                birth_date=customer.birth_date,
                image_url=customer.image_url,
            )
            self.customers[customer.id] = updated
            return replace(updated)

    def update_customer_lang(self, customer_id: str, lang: str) -> bool:
        with self._data_lock:
            current = self.customers.get(customer_id)
            if not current:
                return False
            self.customers[customer_id] = replace(current, lang=lang)
            return True

    def delete_customer(self, customer_id: str) -> bool:
        with self._data_lock:
            removed = self.customers.pop(customer_id, None)
            if not removed:
                return False
            for slot in [s for s in self.devices if s[0] == customer_id]:
                self.devices.pop(slot, None)
            self.saved_services.pop(customer_id, None)
            return True

    # trusted devices
    def create_trusted_device(self, customer_id: str, device_id: str) -> TrustedDevice:
        with self._data_lock:
            if customer_id not in self.customers:
                raise ConstraintViolation("customer does not exist", {"field": "customer_id"})
            slot = (customer_id, device_id)
            existing = self.devices.get(slot)
            if existing:
                return existing
            device = TrustedDevice(customer_id=customer_id, device_id=device_id)
            self.devices[slot] = device
            return device

    def get_trusted_device(self, device_id: str, phone: str) -> Optional[TrustedDevice]:
        with self._data_lock:
            customer = self._find_by_phone(phone)
            if not customer:
                return None
            return self.devices.get((customer.id, device_id))

    # saved services
    def add_saved_service(self, customer_id: str, service_id: str) -> None:
        with self._data_lock:
            if customer_id not in self.customers:
                raise ConstraintViolation("customer does not exist", {"field": "customer_id"})
            saved = self.saved_services.setdefault(customer_id, [])
            if service_id not in saved:
                saved.append(service_id)

    def remove_saved_service(self, customer_id: str, service_id: str) -> bool:
        with self._data_lock:
            saved = self.saved_services.get(customer_id, [])
            if service_id not in saved:
                return False
            saved.remove(service_id)
            return True

    def list_saved_services(self, customer_id: str) -> List[str]:
        with self._data_lock:
            return list(self.saved_services.get(customer_id, []))
