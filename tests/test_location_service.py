from __future__ import annotations

import unittest
from unittest.mock import patch

from app.services.location import distance_m, evaluate_office_location, within_geofence

OFFICE = (20.982011, 105.791223, 300)


class LocationServiceTests(unittest.TestCase):
    def test_distance_m_zero_for_same_point(self) -> None:
        value = distance_m(41.0, 29.0, 41.0, 29.0)
        self.assertAlmostEqual(value, 0.0, places=6)

    def test_distance_m_known_reference(self) -> None:
        # Approximate distance for 1 degree longitude on equator.
        value = distance_m(0.0, 0.0, 0.0, 1.0)
        self.assertAlmostEqual(value, 111_195, delta=300)

    def test_distance_m_is_symmetric(self) -> None:
        v1 = distance_m(21.0285, 105.8542, 20.982011, 105.791223)
        v2 = distance_m(20.982011, 105.791223, 21.0285, 105.8542)
        self.assertAlmostEqual(v1, v2, places=9)

    def test_within_geofence_boundary_is_inclusive(self) -> None:
        self.assertTrue(within_geofence(300.0, 300))
        self.assertFalse(within_geofence(300.01, 300))

    def test_evaluate_office_location_without_coordinates(self) -> None:
        with patch("app.services.location.get_office_location", return_value=OFFICE):
            result = evaluate_office_location(None, 105.79)

        self.assertFalse(result.has_location)
        self.assertIsNone(result.distance_m)
        self.assertIsNone(result.within_geofence)
        self.assertEqual(result.radius_m, 300)

    def test_evaluate_office_location_at_office(self) -> None:
        with patch("app.services.location.get_office_location", return_value=OFFICE):
            result = evaluate_office_location(OFFICE[0], OFFICE[1])

        self.assertEqual(result.distance_m, 0.0)
        self.assertTrue(result.within_geofence)

    def test_evaluate_office_location_outside_radius(self) -> None:
        with patch("app.services.location.get_office_location", return_value=OFFICE):
            # 0.01 degree of latitude is roughly 1.1 km.
            result = evaluate_office_location(OFFICE[0] + 0.01, OFFICE[1])

        self.assertFalse(result.within_geofence)
        self.assertAlmostEqual(result.distance_m or 0.0, 1112, delta=5)


if __name__ == "__main__":
    unittest.main()
