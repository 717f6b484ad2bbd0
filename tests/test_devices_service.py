from __future__ import annotations

import unittest

from app.errors import ApiError
from app.models import DeviceStatus
from app.schemas import DeviceMetadata
from app.services.devices import (
    detect_device_type,
    list_devices,
    list_employee_devices,
    register_device,
    resolve_or_register,
    set_device_status,
)
from tests.sqlite_support import add_employee, make_session

IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148"


class DetectDeviceTypeTests(unittest.TestCase):
    def test_detect_device_type(self) -> None:
        self.assertEqual(detect_device_type(IPHONE_UA), "mobile")
        self.assertEqual(detect_device_type("Mozilla/5.0 (Linux; Android 14; Pixel 8)"), "mobile")
        self.assertEqual(detect_device_type("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)"), "tablet")
        self.assertEqual(detect_device_type("Mozilla/5.0 (Windows NT 10.0; Win64; x64)"), "desktop")
        self.assertEqual(detect_device_type(None), "desktop")


class DeviceRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.employee = add_employee(self.db, "Device Owner")

    def tearDown(self) -> None:
        self.db.close()

    def _resolve(self, fingerprint: str = "fp-device-0001", ip_address: str = "10.0.0.1"):
        result = resolve_or_register(
            self.db,
            employee_id=self.employee.id,
            device_fingerprint=fingerprint,
            metadata=DeviceMetadata(device_name="Work phone", user_agent=IPHONE_UA),
            ip_address=ip_address,
        )
        self.db.commit()
        return result

    def test_unknown_fingerprint_is_auto_registered_active(self) -> None:
        device, status, message = self._resolve()

        self.assertEqual(status, "new")
        self.assertEqual(message, "New device registered successfully")
        self.assertEqual(device.status, DeviceStatus.ACTIVE)
        self.assertEqual(device.device_type, "mobile")
        self.assertIsNotNone(device.last_used_at)

    def test_known_active_device_is_registered_and_touched(self) -> None:
        self._resolve()
        device, status, message = self._resolve(ip_address="10.0.0.99")

        self.assertEqual(status, "registered")
        self.assertIsNone(message)
        self.assertEqual(device.last_ip_address, "10.0.0.99")
        self.assertEqual(len(list_employee_devices(self.db, self.employee.id)), 1)

    def test_inactive_device_is_pending(self) -> None:
        device, _, _ = self._resolve()
        set_device_status(self.db, device.id, DeviceStatus.INACTIVE)

        _, status, message = self._resolve()
        self.assertEqual(status, "pending")
        self.assertEqual(message, "Device is pending approval")

    def test_blocked_device_is_forbidden(self) -> None:
        device, _, _ = self._resolve()
        set_device_status(self.db, device.id, DeviceStatus.BLOCKED)

        with self.assertRaises(ApiError) as exc:
            self._resolve()
        self.assertEqual(exc.exception.status_code, 403)
        self.assertEqual(exc.exception.code, "DEVICE_BLOCKED")

    def test_register_device_rejects_duplicates(self) -> None:
        register_device(
            self.db,
            employee_id=self.employee.id,
            device_fingerprint="fp-dup",
            metadata=DeviceMetadata(),
        )
        with self.assertRaises(ApiError) as exc:
            register_device(
                self.db,
                employee_id=self.employee.id,
                device_fingerprint="fp-dup",
                metadata=DeviceMetadata(),
            )
        self.assertEqual(exc.exception.code, "DEVICE_ALREADY_REGISTERED")

    def test_same_fingerprint_allowed_for_different_employees(self) -> None:
        colleague = add_employee(self.db, "Shared Laptop User")
        register_device(self.db, employee_id=self.employee.id, device_fingerprint="fp-shared", metadata=DeviceMetadata())
        device = register_device(self.db, employee_id=colleague.id, device_fingerprint="fp-shared", metadata=DeviceMetadata())
        self.assertEqual(device.employee_id, colleague.id)

    def test_new_primary_device_clears_previous_primary(self) -> None:
        first = register_device(
            self.db,
            employee_id=self.employee.id,
            device_fingerprint="fp-first",
            metadata=DeviceMetadata(device_name="Old phone"),
            is_primary=True,
        )
        second = register_device(
            self.db,
            employee_id=self.employee.id,
            device_fingerprint="fp-second",
            metadata=DeviceMetadata(device_name="New phone"),
            is_primary=True,
        )

        self.db.refresh(first)
        self.assertFalse(first.is_primary)
        self.assertTrue(second.is_primary)
        devices = list_employee_devices(self.db, self.employee.id)
        self.assertEqual(devices[0].id, second.id)

    def test_unknown_device_id_is_not_found(self) -> None:
        with self.assertRaises(ApiError) as exc:
            set_device_status(self.db, 999, DeviceStatus.BLOCKED)
        self.assertEqual(exc.exception.status_code, 404)
        self.assertEqual(exc.exception.code, "DEVICE_NOT_FOUND")

    def test_register_device_for_unknown_employee_is_not_found(self) -> None:
        with self.assertRaises(ApiError) as exc:
            register_device(
                self.db,
                employee_id=self.employee.id + 500,
                device_fingerprint="fp-orphan",
                metadata=DeviceMetadata(),
            )
        self.assertEqual(exc.exception.status_code, 404)
        self.assertEqual(exc.exception.code, "EMPLOYEE_NOT_FOUND")
        self.assertEqual(list_devices(self.db), [])


if __name__ == "__main__":
    unittest.main()
