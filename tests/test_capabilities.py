"""
F3 Sidecar: Capability Contract Tests

Tests:
  - Fully bound contract validates and constructs the engine
  - Any single missing binding raises ContractIncomplete naming it, and
    the engine factory is never called
  - None, non-callable and unknown bindings are rejected
  - HostCapabilities subclasses validate like any other object
  - CallableCapabilities delegates arguments and return values
  - Engine factory references resolve or fail with EngineFactoryError
"""

import os
import sys
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from fixtures.engine import FakeEngine, FixtureChain, fixture_capabilities
from sidecar.capabilities import (
    CAPABILITY_NAMES,
    CallableCapabilities,
    HostCapabilities,
    missing_capabilities,
    validate_capabilities,
)
from sidecar.engine import RunParams, construct_engine, load_engine_factory
from sidecar.errors import ContractIncomplete, EngineFactoryError
from sidecar.types import Signature

PARAMS = RunParams(rpc_endpoint="127.0.0.1:2345/rpc/v1")


def _all_bindings():
    return {name: MagicMock(name=name) for name in CAPABILITY_NAMES}


class TestContractShape(unittest.TestCase):

    def test_twelve_capabilities(self):
        self.assertEqual(len(CAPABILITY_NAMES), 12)
        self.assertEqual(len(set(CAPABILITY_NAMES)), 12)

    def test_abc_declares_every_capability(self):
        self.assertEqual(set(HostCapabilities.__abstractmethods__), set(CAPABILITY_NAMES))


class TestValidation(unittest.TestCase):

    def test_full_contract_constructs_engine(self):
        caps = fixture_capabilities()
        factory = MagicMock(return_value=FakeEngine())
        engine = construct_engine(factory, caps, PARAMS)
        factory.assert_called_once_with(caps, PARAMS)
        self.assertIsInstance(engine, FakeEngine)

    def test_each_missing_binding_rejected_before_factory(self):
        for name in CAPABILITY_NAMES:
            with self.subTest(missing=name):
                bindings = _all_bindings()
                del bindings[name]
                caps = SimpleNamespace(**bindings)
                factory = MagicMock()
                with self.assertRaises(ContractIncomplete) as ctx:
                    construct_engine(factory, caps, PARAMS)
                self.assertEqual(ctx.exception.missing, [name])
                self.assertIn(name, str(ctx.exception))
                factory.assert_not_called()

    def test_none_capabilities(self):
        with self.assertRaises(ContractIncomplete) as ctx:
            validate_capabilities(None)
        self.assertEqual(ctx.exception.missing, list(CAPABILITY_NAMES))

    def test_non_callable_binding(self):
        bindings = _all_bindings()
        bindings["get_head"] = "not a function"
        self.assertEqual(missing_capabilities(SimpleNamespace(**bindings)), ["get_head"])

    def test_all_missing_listed(self):
        bindings = _all_bindings()
        del bindings["sign_message"]
        del bindings["finalize"]
        with self.assertRaises(ContractIncomplete) as ctx:
            validate_capabilities(SimpleNamespace(**bindings))
        self.assertEqual(ctx.exception.missing, ["sign_message", "finalize"])

    def test_validate_returns_object(self):
        caps = fixture_capabilities()
        self.assertIs(validate_capabilities(caps), caps)

    def test_subclass_validates(self):
        methods = {name: (lambda self, *a: None) for name in CAPABILITY_NAMES}
        Host = type("Host", (HostCapabilities,), methods)
        host = Host()
        self.assertIs(validate_capabilities(host), host)


class TestCallableCapabilities(unittest.TestCase):

    def test_missing_binding_at_construction(self):
        bindings = _all_bindings()
        del bindings["version"]
        with self.assertRaises(ContractIncomplete) as ctx:
            CallableCapabilities(**bindings)
        self.assertEqual(ctx.exception.missing, ["version"])

    def test_none_binding_at_construction(self):
        bindings = _all_bindings()
        bindings["protect_peer"] = None
        with self.assertRaises(ContractIncomplete) as ctx:
            CallableCapabilities.from_mapping(bindings)
        self.assertEqual(ctx.exception.missing, ["protect_peer"])

    def test_unknown_binding_rejected(self):
        bindings = _all_bindings()
        bindings["get_mempool"] = MagicMock()
        with self.assertRaises(ContractIncomplete) as ctx:
            CallableCapabilities(**bindings)
        self.assertIn("get_mempool", str(ctx.exception))

    def test_delegates_arguments(self):
        bindings = _all_bindings()
        bindings["sign_message"].return_value = Signature(type=2, data=b"sig")
        caps = CallableCapabilities(**bindings)

        self.assertEqual(caps.sign_message(b"signer", b"msg"), Signature(type=2, data=b"sig"))
        bindings["sign_message"].assert_called_once_with(b"signer", b"msg")

        caps.get_tipset_by_epoch(42)
        bindings["get_tipset_by_epoch"].assert_called_once_with(42)

        caps.finalize(b"ts-7")
        bindings["finalize"].assert_called_once_with(b"ts-7")

    def test_errors_from_bindings_propagate(self):
        bindings = _all_bindings()
        bindings["get_head"].side_effect = ConnectionError("node down")
        caps = CallableCapabilities(**bindings)
        with self.assertRaises(ConnectionError):
            caps.get_head()

    def test_fixture_chain_capabilities(self):
        chain = FixtureChain(height=5)
        caps = fixture_capabilities(chain)
        self.assertEqual(caps.get_head().epoch, 5)
        self.assertEqual(caps.get_parent(b"ts-5").epoch, 4)
        self.assertEqual(caps.get_tipset_by_epoch(2).key, b"ts-2")
        self.assertTrue(caps.protect_peer("12D3KooWPeer"))
        caps.finalize(b"ts-3")
        self.assertEqual(chain.protected, ["12D3KooWPeer"])
        self.assertEqual(chain.finalized, [b"ts-3"])
        self.assertEqual(caps.get_participating_miner_ids(), [1000, 1001])


class TestEngineFactoryReference(unittest.TestCase):

    def test_resolves(self):
        factory = load_engine_factory("fixtures.engine:create_engine")
        engine = construct_engine(factory, fixture_capabilities(), PARAMS)
        self.assertEqual(engine.get_cert(0).instance, 0)

    def test_malformed_reference(self):
        for ref in ("", "fixtures.engine", ":create_engine", "fixtures.engine:"):
            with self.subTest(ref=ref):
                with self.assertRaises(EngineFactoryError):
                    load_engine_factory(ref)

    def test_missing_module(self):
        with self.assertRaises(EngineFactoryError):
            load_engine_factory("no_such_engine_module:create")

    def test_missing_attribute(self):
        with self.assertRaises(EngineFactoryError):
            load_engine_factory("fixtures.engine:no_such_factory")

    def test_not_callable(self):
        with self.assertRaises(EngineFactoryError):
            load_engine_factory("fixtures.engine:GENESIS_POWER_TABLE")


if __name__ == "__main__":
    unittest.main()
