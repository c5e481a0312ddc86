import pathlib
import sys
import unittest

from eth_abi import decode

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from superdapp_payouts import tx_preparer  # noqa: E402
from superdapp_payouts.normalize import to_checksum_address  # noqa: E402

AIRDROP = "0x2aACce8B9522F81F14834883198645BB6894Bfc0"
SUPR = {
    "address": "0x3390108E913824B8eaD638444cc52B9aBdF63798",
    "symbol": "SUPR",
    "name": "SuperDapp Token",
    "decimals": 18,
    "chainId": 570,
    "isNative": False,
}
NATIVE = {
    "address": "0x0000000000000000000000000000000000000000",
    "symbol": "SYS",
    "name": "Syscoin",
    "decimals": 18,
    "chainId": 570,
    "isNative": True,
}
FEES = {"gasPrice": 20 * 10**9, "maxFeePerGas": 25 * 10**9, "maxPriorityFeePerGas": 2 * 10**9}


def make_manifest(count: int, token=SUPR) -> dict:
    winners = []
    for i in range(count):
        address = to_checksum_address("0x" + f"{i + 1:040x}")
        winners.append(
            {"address": address, "amount": str((i + 1) * 10**18), "rank": i + 1, "id": f"w{i}", "token": token, "metadata": {}}
        )
    return {
        "id": "manifest-1",
        "winners": winners,
        "token": token,
        "totalAmount": str(sum(int(w["amount"]) for w in winners)),
        "createdBy": "0x0000000000000000000000000000000000000000",
        "createdAt": "2024-01-01T00:00:00.000Z",
        "roundId": "r",
        "groupId": "g",
        "version": "1.0",
        "hash": "0x",
    }


def calldata_args(data: str) -> bytes:
    return bytes.fromhex(data[10:])


class EncodingTests(unittest.TestCase):
    def test_approve_selector(self) -> None:
        self.assertEqual(tx_preparer.function_selector("approve(address,uint256)").hex(), "095ea7b3")
        data = tx_preparer.encode_approve(AIRDROP, 5)
        self.assertTrue(data.startswith("0x095ea7b3"))
        spender, amount = decode(["address", "uint256"], calldata_args(data))
        self.assertEqual(spender.lower(), AIRDROP.lower())
        self.assertEqual(amount, 5)

    def test_batch_encoders_reject_length_mismatch(self) -> None:
        with self.assertRaises(ValueError):
            tx_preparer.encode_batch_native_transfer([AIRDROP], [])
        with self.assertRaises(ValueError):
            tx_preparer.encode_batch_token_transfer(SUPR["address"], [AIRDROP], [1, 2])

    def test_chunk_preserves_order(self) -> None:
        self.assertEqual(list(tx_preparer.chunk([1, 2, 3, 4, 5], 2)), [[1, 2], [3, 4], [5]])
        self.assertEqual(list(tx_preparer.chunk([], 3)), [])
        with self.assertRaises(ValueError):
            list(tx_preparer.chunk([1], 0))


class PreparePushTxsTests(unittest.TestCase):
    def test_token_path_with_approval_and_batches(self) -> None:
        manifest = make_manifest(60)
        plan = tx_preparer.prepare_push_txs(manifest, token=SUPR, fees=FEES)

        self.assertTrue(plan["validation"]["isValid"], plan["validation"])
        txs = plan["transactions"]
        self.assertEqual(len(txs), 3)

        approve = txs[0]
        self.assertEqual(approve["to"].lower(), SUPR["address"].lower())
        self.assertEqual(approve["gasLimit"], "100000")
        spender, amount = decode(["address", "uint256"], calldata_args(approve["data"]))
        self.assertEqual(spender.lower(), AIRDROP.lower())
        self.assertEqual(amount, int(manifest["totalAmount"]))

        selector = "0x" + tx_preparer.function_selector(tx_preparer.BATCH_TOKEN_TRANSFER_SIGNATURE).hex()
        recipients_seen = []
        total = 0
        for tx in txs[1:]:
            self.assertEqual(tx["to"].lower(), AIRDROP.lower())
            self.assertEqual(tx["gasLimit"], "500000")
            self.assertEqual(tx["value"], "0")
            self.assertTrue(tx["data"].startswith(selector))
            token, recipients, amounts = decode(["address", "address[]", "uint256[]"], calldata_args(tx["data"]))
            self.assertEqual(token.lower(), SUPR["address"].lower())
            recipients_seen.extend(r.lower() for r in recipients)
            total += sum(amounts)
        self.assertEqual(recipients_seen, [w["address"].lower() for w in manifest["winners"]])
        self.assertEqual(total, int(manifest["totalAmount"]))

        for tx in txs:
            self.assertEqual(tx["nonce"], 0)
            self.assertEqual(tx["type"], 2)
            self.assertEqual(tx["chainId"], 570)
            self.assertEqual(tx["gasPrice"], "20000000000")
            self.assertEqual(tx["maxFeePerGas"], "25000000000")
            self.assertEqual(tx["maxPriorityFeePerGas"], "2000000000")

        self.assertEqual(plan["estimatedGasCost"], str((100000 + 2 * 500000) * 20 * 10**9))
        self.assertEqual(plan["summary"]["estimatedDuration"], "45s")
        self.assertEqual(plan["summary"]["recipientCount"], 60)
        self.assertEqual(plan["summary"]["totalAmount"], manifest["totalAmount"])
        self.assertEqual(plan["manifestId"], "manifest-1")

    def test_batch_count_is_ceiling(self) -> None:
        for count, expected in ((1, 1), (50, 1), (51, 2), (100, 2), (101, 3)):
            plan = tx_preparer.prepare_push_txs(make_manifest(count), token=SUPR, fees=FEES, single_approval=False)
            self.assertEqual(len(plan["transactions"]), expected, count)

    def test_native_path(self) -> None:
        manifest = make_manifest(3, token=NATIVE)
        plan = tx_preparer.prepare_push_txs(manifest, token=NATIVE, fees=FEES, max_per_batch=2)
        self.assertTrue(plan["validation"]["isValid"])
        fund, *batches = plan["transactions"]
        self.assertEqual(fund["to"].lower(), AIRDROP.lower())
        self.assertEqual(fund["value"], manifest["totalAmount"])
        self.assertEqual(fund["data"], "0x")
        self.assertEqual(fund["gasLimit"], "21000")
        self.assertEqual(len(batches), 2)
        selector = "0x" + tx_preparer.function_selector(tx_preparer.BATCH_NATIVE_TRANSFER_SIGNATURE).hex()
        recipients, amounts = decode(["address[]", "uint256[]"], calldata_args(batches[1]["data"]))
        self.assertTrue(batches[0]["data"].startswith(selector))
        self.assertEqual(len(recipients), 1)
        self.assertEqual(list(amounts), [3 * 10**18])

    def test_empty_winners_yield_only_approval(self) -> None:
        plan = tx_preparer.prepare_push_txs(make_manifest(0), token=SUPR, fees=FEES)
        self.assertTrue(plan["validation"]["isValid"])
        self.assertEqual(len(plan["transactions"]), 1)
        self.assertTrue(plan["transactions"][0]["data"].startswith("0x095ea7b3"))

    def test_unsupported_chain_fails_validation(self) -> None:
        token = dict(SUPR, chainId=1)
        plan = tx_preparer.prepare_push_txs(make_manifest(2, token=token), token=token, fees=FEES)
        self.assertFalse(plan["validation"]["isValid"])
        self.assertEqual(plan["transactions"], [])
        self.assertIn(
            "SuperDappAirdrop contract not configured for Ethereum Mainnet. "
            "Please provide the airdrop contract address manually.",
            plan["validation"]["errors"],
        )
        self.assertEqual(plan["estimatedGasCost"], "0")
        self.assertEqual(plan["summary"]["recipientCount"], 0)
        self.assertEqual(plan["summary"]["estimatedDuration"], "0s")

    def test_unknown_chain_uses_chain_id_in_message(self) -> None:
        token = dict(SUPR, chainId=31337)
        plan = tx_preparer.prepare_push_txs(make_manifest(1, token=token), token=token, fees=FEES)
        self.assertFalse(plan["validation"]["isValid"])
        self.assertIn("Chain ID 31337", plan["validation"]["errors"][0])

    def test_explicit_airdrop_on_unknown_chain_warns(self) -> None:
        token = dict(SUPR, chainId=31337)
        custom = "0x" + "11" * 20
        plan = tx_preparer.prepare_push_txs(make_manifest(1, token=token), token=token, airdrop=custom, fees=FEES)
        self.assertTrue(plan["validation"]["isValid"])
        self.assertEqual(plan["transactions"][1]["to"].lower(), custom)
        self.assertEqual(len(plan["validation"]["warnings"]), 1)

    def test_invalid_options_are_reported(self) -> None:
        manifest = make_manifest(1)
        bad_airdrop = tx_preparer.prepare_push_txs(manifest, token=SUPR, airdrop="0x1234", fees=FEES)
        self.assertFalse(bad_airdrop["validation"]["isValid"])
        self.assertEqual(bad_airdrop["transactions"], [])

        bad_batch = tx_preparer.prepare_push_txs(manifest, token=SUPR, max_per_batch=0, fees=FEES)
        self.assertFalse(bad_batch["validation"]["isValid"])

        zero_token = dict(SUPR, address="0x0000000000000000000000000000000000000000")
        bad_token = tx_preparer.prepare_push_txs(manifest, token=zero_token, fees=FEES)
        self.assertFalse(bad_token["validation"]["isValid"])

    def test_bad_winner_amount_is_reported(self) -> None:
        manifest = make_manifest(2)
        manifest["winners"][1]["amount"] = "1.5"
        plan = tx_preparer.prepare_push_txs(manifest, token=SUPR, fees=FEES)
        self.assertFalse(plan["validation"]["isValid"])
        self.assertEqual(plan["transactions"], [])

    def test_total_must_equal_sum_of_winner_amounts(self) -> None:
        manifest = make_manifest(2)
        manifest["totalAmount"] = "1"
        plan = tx_preparer.prepare_push_txs(manifest, token=SUPR, fees=FEES)
        self.assertFalse(plan["validation"]["isValid"])
        self.assertEqual(plan["transactions"], [])
        self.assertIn("Manifest totalAmount does not equal the sum of winner amounts", plan["validation"]["errors"])

        native = make_manifest(2, token=NATIVE)
        native["totalAmount"] = str(10 * 10**18)
        native_plan = tx_preparer.prepare_push_txs(native, token=NATIVE, fees=FEES)
        self.assertFalse(native_plan["validation"]["isValid"])

    def test_token_mismatch_warns(self) -> None:
        other = dict(SUPR, address="0x" + "22" * 20)
        plan = tx_preparer.prepare_push_txs(make_manifest(1), token=other, fees=FEES)
        self.assertTrue(plan["validation"]["isValid"])
        self.assertIn("Token option does not match the manifest token", plan["validation"]["warnings"])

    def test_default_fees_come_from_config(self) -> None:
        plan = tx_preparer.prepare_push_txs(make_manifest(1), token=SUPR)
        self.assertEqual(plan["transactions"][0]["gasPrice"], "20000000000")


if __name__ == "__main__":
    unittest.main()
