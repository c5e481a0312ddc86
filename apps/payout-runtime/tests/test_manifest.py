import itertools
import json
import pathlib
import sys
import unittest
from datetime import datetime, timezone

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from superdapp_payouts import builder, exporters  # noqa: E402
from superdapp_payouts.canonical import canonical_json, sha256_hex  # noqa: E402
from superdapp_payouts.errors import InvalidAmountError, PayoutError  # noqa: E402

SUPR = {
    "address": "0x3390108E913824B8eaD638444cc52B9aBdF63798",
    "symbol": "SUPR",
    "name": "SuperDapp Token",
    "decimals": 18,
    "chainId": 570,
    "isNative": False,
}

ALICE = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BOB = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"


def fixed_ids():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


def fixed_clock() -> datetime:
    return datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)


def build(rows, **kwargs):
    kwargs.setdefault("token", SUPR)
    kwargs.setdefault("round_id", "round-123")
    kwargs.setdefault("group_id", "group-456")
    kwargs.setdefault("id_factory", fixed_ids())
    kwargs.setdefault("clock", fixed_clock)
    return builder.build_manifest(rows, **kwargs)


class CanonicalJsonTests(unittest.TestCase):
    def test_key_order_does_not_matter(self) -> None:
        a = {"b": 1, "a": {"y": [1, 2], "x": None}}
        b = {"a": {"x": None, "y": [1, 2]}, "b": 1}
        self.assertEqual(canonical_json(a), canonical_json(b))
        self.assertEqual(canonical_json(a), '{"a":{"x":null,"y":[1,2]},"b":1}')

    def test_numbers_and_text(self) -> None:
        self.assertEqual(canonical_json([10**30, 2.0, 1.5, True, "é"]), '[1000000000000000000000000000000,2,1.5,true,"é"]')

    def test_floats_use_ecmascript_number_text(self) -> None:
        cases = [
            (1e-7, "1e-7"),
            (0.00001, "0.00001"),
            (0.000001, "0.000001"),
            (-2.5e-9, "-2.5e-9"),
            (1e21, "1e+21"),
            (1.5e300, "1.5e+300"),
            (1e20, "100000000000000000000"),
            (123.456, "123.456"),
            (0.1, "0.1"),
            (-0.0, "0"),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                self.assertEqual(canonical_json({"m": value}), '{"m":' + expected + "}")

    def test_rejects_nan_and_non_string_keys(self) -> None:
        with self.assertRaises(ValueError):
            canonical_json({"x": float("nan")})
        with self.assertRaises(TypeError):
            canonical_json({1: "x"})

    def test_sha256_hex_is_prefixed(self) -> None:
        digest = sha256_hex("")
        self.assertEqual(digest, "0xe3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855")


class BuildManifestTests(unittest.TestCase):
    def test_basic_manifest_fields(self) -> None:
        result = build([{"address": ALICE.lower(), "amount": "100.5", "rank": 1}])
        manifest = result["manifest"]
        self.assertEqual(result["rejectedAddresses"], [])
        self.assertEqual(len(manifest["winners"]), 1)
        winner = manifest["winners"][0]
        self.assertEqual(winner["address"], ALICE)
        self.assertEqual(winner["amount"], "100500000000000000000")
        self.assertEqual(winner["id"], "id-1")
        self.assertEqual(winner["metadata"], {})
        self.assertEqual(manifest["id"], "id-2")
        self.assertEqual(manifest["totalAmount"], "100500000000000000000")
        self.assertEqual(manifest["createdAt"], "2024-01-02T03:04:05.678Z")
        self.assertEqual(manifest["createdBy"], "0x0000000000000000000000000000000000000000")
        self.assertEqual(manifest["version"], "1.0")
        self.assertTrue(manifest["hash"].startswith("0x"))
        self.assertEqual(len(manifest["hash"]), 66)

    def test_hash_is_stable_with_fixed_generators(self) -> None:
        rows = [{"address": ALICE, "amount": "1", "rank": 1}, {"address": BOB, "amount": "2", "rank": 2}]
        first = build(rows)["manifest"]
        second = build(rows)["manifest"]
        self.assertEqual(first["hash"], second["hash"])
        self.assertTrue(builder.verify_manifest(first))

    def test_hash_changes_with_clock(self) -> None:
        rows = [{"address": ALICE, "amount": "1", "rank": 1}]
        first = build(rows)["manifest"]
        later = build(rows, clock=lambda: datetime(2024, 1, 2, 3, 4, 6, tzinfo=timezone.utc))["manifest"]
        self.assertNotEqual(first["hash"], later["hash"])

    def test_hash_covers_only_hashed_fields(self) -> None:
        manifest = build([{"address": ALICE, "amount": "1", "rank": 1}])["manifest"]
        body = {field: manifest[field] for field in builder.HASHED_FIELDS}
        self.assertEqual(manifest["hash"], sha256_hex(canonical_json(body)))
        tampered = dict(manifest, totalAmount="2")
        self.assertFalse(builder.verify_manifest(tampered))

    def test_duplicates_are_merged(self) -> None:
        rows = [
            {"address": ALICE.lower(), "amount": "1.5", "rank": 1, "id": "first", "metadata": {"source": "a"}},
            {"address": BOB, "amount": "1", "rank": 2},
            {"address": ALICE.upper().replace("0X", "0x"), "amount": "2", "rank": 9, "id": "second"},
        ]
        manifest = build(rows)["manifest"]
        self.assertEqual([w["address"] for w in manifest["winners"]], [ALICE, BOB])
        alice = manifest["winners"][0]
        self.assertEqual(alice["amount"], str(3500000000000000000))
        self.assertEqual(alice["rank"], 1)
        self.assertEqual(alice["id"], "first")
        self.assertEqual(alice["metadata"], {"source": "a"})
        self.assertEqual(manifest["totalAmount"], str(4500000000000000000))

    def test_rejected_addresses_are_reported_and_logged(self) -> None:
        rows = [{"address": "not-an-address", "amount": "1", "rank": 1}, {"address": BOB, "amount": "1", "rank": 2}]
        with self.assertLogs("superdapp_payouts.builder", level="WARNING") as logs:
            result = build(rows)
        self.assertEqual(result["rejectedAddresses"], ["not-an-address"])
        self.assertEqual(len(result["manifest"]["winners"]), 1)
        self.assertIn("Invalid address rejected: not-an-address", logs.output[0])

    def test_clamp_decimals_applies_before_total(self) -> None:
        rows = [{"address": ALICE, "amount": "1.123456789", "rank": 1}, {"address": BOB, "amount": "0.00009", "rank": 2}]
        manifest = build(rows, clamp_decimals=4)["manifest"]
        self.assertEqual(manifest["winners"][0]["amount"], "1123400000000000000")
        self.assertEqual(manifest["winners"][1]["amount"], "0")
        self.assertEqual(manifest["totalAmount"], "1123400000000000000")

    def test_negative_amount_raises(self) -> None:
        with self.assertRaises(InvalidAmountError) as ctx:
            build([{"address": ALICE, "amount": "-1", "rank": 1}])
        self.assertIn("Row 0", str(ctx.exception))

    def test_missing_amount_raises(self) -> None:
        with self.assertRaises(InvalidAmountError):
            build([{"address": ALICE, "rank": 1}])

    def test_invalid_creator_raises(self) -> None:
        with self.assertRaises(PayoutError):
            build([], created_by="0xbad")

    def test_empty_rows(self) -> None:
        manifest = build([])["manifest"]
        self.assertEqual(manifest["winners"], [])
        self.assertEqual(manifest["totalAmount"], "0")


class ExporterTests(unittest.TestCase):
    def _manual_manifest(self, winners):
        return {
            "id": "m-1",
            "winners": winners,
            "token": SUPR,
            "totalAmount": str(sum(int(w["amount"]) for w in winners)),
            "createdBy": "0x0000000000000000000000000000000000000000",
            "createdAt": "2024-01-01T00:00:00.000Z",
            "roundId": "round-123",
            "groupId": "group-456",
            "version": "1.0",
            "hash": "0x",
        }

    def test_csv_scenario(self) -> None:
        first = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
        second = "0x1234567890123456789012345678901234567890"
        manifest = self._manual_manifest(
            [
                {"address": first, "amount": "100500000000000000000", "rank": 1, "id": "a", "token": SUPR, "metadata": {}},
                {"address": second, "amount": "50250000000000000000", "rank": 2, "id": "b", "token": SUPR, "metadata": {}},
            ]
        )
        lines = exporters.to_csv(manifest).split("\n")
        self.assertEqual(
            lines,
            [
                "address,amountWei,symbol,roundId,groupId",
                f"{first},100500000000000000000,SUPR,round-123,group-456",
                f"{second},50250000000000000000,SUPR,round-123,group-456",
            ],
        )

    def test_csv_empty_manifest_is_header_only(self) -> None:
        self.assertEqual(exporters.to_csv(self._manual_manifest([])), "address,amountWei,symbol,roundId,groupId")

    def test_json_export_is_canonical_and_round_trips(self) -> None:
        manifest = build([{"address": ALICE, "amount": "3", "rank": 1, "metadata": {"z": 1, "a": 2}}])["manifest"]
        text = exporters.to_json(manifest)
        self.assertNotIn('": ', text)
        self.assertEqual(list(json.loads(text)), sorted(manifest))
        self.assertEqual(exporters.load_manifest(text), manifest)

    def test_load_manifest_rejects_tampering(self) -> None:
        manifest = build([{"address": ALICE, "amount": "3", "rank": 1}])["manifest"]
        payload = json.loads(exporters.to_json(manifest))
        payload["winners"][0]["amount"] = "4000000000000000000"
        with self.assertRaises(PayoutError) as ctx:
            exporters.load_manifest(json.dumps(payload))
        self.assertIn("hash mismatch", str(ctx.exception))

    def test_load_manifest_requires_fields(self) -> None:
        with self.assertRaises(PayoutError):
            exporters.load_manifest('{"id": "x"}')
        with self.assertRaises(PayoutError):
            exporters.load_manifest("[]")
        with self.assertRaises(PayoutError):
            exporters.load_manifest("{not json")


if __name__ == "__main__":
    unittest.main()
