# commerce/tests/test_references.py

import re
from concurrent.futures import ThreadPoolExecutor
from unittest import mock

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase

from commerce.exceptions import StorageUnavailable
from commerce.references import (
    generate_order_reference,
    generate_reference,
    renewal_reference,
)

REFERENCE_RE = re.compile(r"^ORD-[A-Z0-9]{8}-\d+$")


class ReferenceGeneratorTests(SimpleTestCase):
    """
    GUARANTEES:
    - References look like <PREFIX>-<8 upper alphanumerics>-<unix time>
    - A taken candidate is regenerated, never returned
    - A failed existence check surfaces as StorageUnavailable
    """

    def test_reference_format(self):
        ref = generate_reference("ord", exists=lambda _: False)
        self.assertRegex(ref, REFERENCE_RE)

    def test_collision_regenerates(self):
        taken = {"ORD-AAAAAAAA-1700000000"}

        with mock.patch("commerce.references.time.time", return_value=1700000000), mock.patch(
            "commerce.references.get_random_string",
            side_effect=["AAAAAAAA", "AAAAAAAA", "BBBBBBBB"],
        ):
            ref = generate_reference("ORD", exists=lambda candidate: candidate in taken)

        self.assertEqual(ref, "ORD-BBBBBBBB-1700000000")

    def test_storage_failure_raises_storage_unavailable(self):
        def broken(_candidate):
            raise DatabaseError("connection refused")

        with self.assertRaises(StorageUnavailable):
            generate_reference("SUB", exists=broken)

    def test_blank_prefix_rejected(self):
        with self.assertRaises(ValueError):
            generate_reference("  ", exists=lambda _: False)

    def test_concurrent_generation_yields_distinct_references(self):
        with ThreadPoolExecutor(max_workers=8) as pool:
            refs = list(
                pool.map(lambda _: generate_reference("ORD", exists=lambda c: False), range(500))
            )

        self.assertEqual(len(set(refs)), 500)

    def test_renewal_reference_wraps_subscription_reference(self):
        self.assertEqual(
            renewal_reference("SUB-ABCDEFGH-1700000000"),
            "RENEWAL-SUB-ABCDEFGH-1700000000",
        )


class OrderReferenceTests(TestCase):
    def test_order_reference_checks_existing_orders(self):
        ref = generate_order_reference()
        self.assertRegex(ref, REFERENCE_RE)
