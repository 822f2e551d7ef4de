"""
F3 Sidecar: Supervisor Tests

Tests:
  - Clean first run: one attempt, no sleep
  - k transient failures then a clean exit: k sleeps of 10s, k retry logs
  - Six consecutive failures: six attempts, five sleeps, failure result,
    nothing raised
  - ContractIncomplete from run is re-raised and never retried
  - Custom policy (zero retries, short backoff)
  - stop() during backoff cancels the next attempt
  - start()/wait() on the dedicated thread
  - State transitions observed from the backoff
  - Facade queries during a run and during a backoff return promptly
"""

import dataclasses
import os
import sys
import threading
import time
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from fixtures.engine import FakeEngine, fixture_capabilities, make_certificate
from sidecar.engine import RunParams
from sidecar.errors import ConfigError, ContractIncomplete
from sidecar.facade import QueryFacade
from sidecar.supervisor import (
    DEFAULT_POLICY,
    RetryPolicy,
    Supervisor,
    SupervisorState,
)

PARAMS = RunParams(rpc_endpoint="127.0.0.1:2345/rpc/v1", jwt="token", db="/tmp/f3")


class RecordingSleep:
    """Stand-in for time.sleep that records requested durations."""

    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep(seconds)


def _failures(n):
    return [RuntimeError(f"transient {i + 1}") for i in range(n)]


class TestDefaultPolicy(unittest.TestCase):

    def test_defaults(self):
        self.assertEqual(DEFAULT_POLICY.max_retries, 5)
        self.assertEqual(DEFAULT_POLICY.backoff_seconds, 10.0)

    def test_policy_is_immutable(self):
        sup = Supervisor(FakeEngine(), PARAMS)
        self.assertIs(sup.policy, DEFAULT_POLICY)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            sup.policy.max_retries = 0
        self.assertEqual(DEFAULT_POLICY.max_retries, 5)

    def test_default_budget_not_shared_state(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            Supervisor(FakeEngine(), PARAMS).policy.max_retries = 0
        engine = FakeEngine(outcomes=_failures(6))
        result = Supervisor(engine, PARAMS, sleep_fn=RecordingSleep()).run()
        self.assertEqual(engine.run_calls, 6)
        self.assertEqual(result.retries, 5)

    def test_negative_values_rejected(self):
        with self.assertRaises(ConfigError):
            RetryPolicy(max_retries=-1)
        with self.assertRaises(ConfigError):
            RetryPolicy(backoff_seconds=-0.5)


class TestCleanExit(unittest.TestCase):

    def test_first_run_succeeds(self):
        engine = FakeEngine(outcomes=[None])
        sleep = RecordingSleep()
        result = Supervisor(engine, PARAMS, sleep_fn=sleep).run()
        self.assertTrue(result)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.attempts, 1)
        self.assertEqual(result.retries, 0)
        self.assertEqual(sleep.calls, [])
        self.assertEqual(engine.run_calls, 1)

    def test_clean_exit_is_not_restarted(self):
        engine = FakeEngine(outcomes=[None, RuntimeError("never reached")])
        Supervisor(engine, PARAMS, sleep_fn=RecordingSleep()).run()
        self.assertEqual(engine.run_calls, 1)

    def test_params_passed_through(self):
        engine = FakeEngine()
        Supervisor(engine, PARAMS, sleep_fn=RecordingSleep()).run()
        self.assertEqual(engine.run_params, [PARAMS])


class TestTransientFailures(unittest.TestCase):

    def test_k_failures_then_success(self):
        for k in range(1, 6):
            with self.subTest(k=k):
                engine = FakeEngine(outcomes=_failures(k) + [None])
                sleep = RecordingSleep()
                sup = Supervisor(engine, PARAMS, sleep_fn=sleep)
                with self.assertLogs("f3.sidecar.supervisor", "ERROR") as cm:
                    result = sup.run()

                self.assertTrue(result.succeeded)
                self.assertEqual(result.attempts, k + 1)
                self.assertEqual(sleep.calls, [10.0] * k)
                self.assertEqual(len(cm.records), k)
                for i, record in enumerate(cm.records, start=1):
                    self.assertIn(f"retrying({i}) in 10s", record.getMessage())
                    self.assertIn(f"transient {i}", record.getMessage())
                self.assertEqual(sup.state, SupervisorState.TERMINATED)

    def test_six_failures_gives_up(self):
        engine = FakeEngine(outcomes=_failures(7))
        sleep = RecordingSleep()
        sup = Supervisor(engine, PARAMS, sleep_fn=sleep)
        with self.assertLogs("f3.sidecar.supervisor", "ERROR") as cm:
            result = sup.run()

        self.assertFalse(result)
        self.assertEqual(engine.run_calls, 6)
        self.assertEqual(result.attempts, 6)
        self.assertEqual(result.retries, 5)
        self.assertEqual(sleep.calls, [10.0] * 5)
        self.assertEqual(str(result.last_error), "transient 6")
        self.assertIn("giving up", cm.records[-1].getMessage())
        self.assertEqual(sup.retries, 5)
        self.assertEqual(sup.retries, result.retries)

    def test_attempt_log_records_each_run(self):
        engine = FakeEngine(outcomes=_failures(2) + [None])
        result = Supervisor(engine, PARAMS, sleep_fn=RecordingSleep()).run()
        statuses = [e["status"] for e in result.attempt_log]
        self.assertEqual(statuses, ["failed", "failed", "success"])
        self.assertEqual(result.attempt_log[0]["error"], "transient 1")
        self.assertEqual(result.attempt_log[0]["backoff_s"], 10.0)

    def test_retry_log_carries_structured_fields(self):
        engine = FakeEngine(outcomes=_failures(1) + [None])
        with self.assertLogs("f3.sidecar.supervisor", "ERROR") as cm:
            Supervisor(engine, PARAMS, sleep_fn=RecordingSleep()).run()
        self.assertEqual(cm.records[0].structured["attempt"], 1)
        self.assertEqual(cm.records[0].structured["backoff_s"], 10.0)


class TestContractIncomplete(unittest.TestCase):

    def test_reraised_without_retry(self):
        engine = FakeEngine(outcomes=[ContractIncomplete(["sign_message"]), None])
        sleep = RecordingSleep()
        sup = Supervisor(engine, PARAMS, sleep_fn=sleep)
        with self.assertRaises(ContractIncomplete) as ctx:
            sup.run()
        self.assertEqual(ctx.exception.missing, ["sign_message"])
        self.assertEqual(engine.run_calls, 1)
        self.assertEqual(sleep.calls, [])
        self.assertEqual(sup.state, SupervisorState.TERMINATED)


class TestCustomPolicy(unittest.TestCase):

    def test_zero_retries(self):
        engine = FakeEngine(outcomes=_failures(2))
        sleep = RecordingSleep()
        result = Supervisor(engine, PARAMS, RetryPolicy(max_retries=0), sleep_fn=sleep).run()
        self.assertFalse(result)
        self.assertEqual(engine.run_calls, 1)
        self.assertEqual(sleep.calls, [])

    def test_backoff_is_flat(self):
        engine = FakeEngine(outcomes=_failures(3) + [None])
        sleep = RecordingSleep()
        policy = RetryPolicy(max_retries=3, backoff_seconds=0.25)
        result = Supervisor(engine, PARAMS, policy, sleep_fn=sleep).run()
        self.assertTrue(result)
        self.assertEqual(sleep.calls, [0.25, 0.25, 0.25])


class TestCancellation(unittest.TestCase):

    def test_stop_during_backoff(self):
        engine = FakeEngine(outcomes=_failures(3) + [None])
        sup = Supervisor(engine, PARAMS)
        sleep = RecordingSleep(on_sleep=lambda s: sup.stop())
        sup._sleep_fn = sleep
        result = sup.run()
        self.assertFalse(result)
        self.assertTrue(result.cancelled)
        self.assertEqual(engine.run_calls, 1)
        self.assertEqual(sup.state, SupervisorState.TERMINATED)

    def test_stop_before_run(self):
        engine = FakeEngine()
        sup = Supervisor(engine, PARAMS)
        sup.stop()
        result = sup.run()
        self.assertTrue(result.cancelled)
        self.assertEqual(engine.run_calls, 0)

    def test_stop_wakes_default_sleep(self):
        engine = FakeEngine(outcomes=_failures(1) + [None])
        sup = Supervisor(engine, PARAMS, RetryPolicy(backoff_seconds=60))
        sup.start()
        # Wait until the first attempt failed and the backoff began
        for _ in range(500):
            if sup.state == SupervisorState.RETRYING:
                break
            time.sleep(0.01)
        sup.stop()
        result = sup.wait(timeout=5)
        self.assertIsNotNone(result)
        self.assertTrue(result.cancelled)
        self.assertLess(result.elapsed_seconds, 30)


class TestDedicatedThread(unittest.TestCase):

    def test_start_and_wait(self):
        engine = FakeEngine(outcomes=_failures(2) + [None])
        sup = Supervisor(engine, PARAMS, RetryPolicy(backoff_seconds=0.01))
        thread = sup.start()
        self.assertEqual(thread.name, "f3-supervisor")
        self.assertTrue(thread.daemon)
        result = sup.wait(timeout=5)
        self.assertTrue(result)
        self.assertEqual(result.attempts, 3)

    def test_wait_times_out_while_running(self):
        engine = FakeEngine(hold=True)
        sup = Supervisor(engine, PARAMS)
        sup.start()
        self.assertTrue(engine.entered.wait(5))
        self.assertIsNone(sup.wait(timeout=0.05))
        engine.release()
        self.assertTrue(sup.wait(timeout=5))

    def test_wait_reraises_contract_error(self):
        engine = FakeEngine(outcomes=[ContractIncomplete(["finalize"])])
        sup = Supervisor(engine, PARAMS)
        sup.start()
        with self.assertRaises(ContractIncomplete):
            sup.wait(timeout=5)

    def test_start_twice_rejected(self):
        sup = Supervisor(FakeEngine(), PARAMS)
        sup.start()
        with self.assertRaises(RuntimeError):
            sup.start()
        sup.wait(timeout=5)

    def test_wait_without_start_rejected(self):
        with self.assertRaises(RuntimeError):
            Supervisor(FakeEngine(), PARAMS).wait()


class TestStateTransitions(unittest.TestCase):

    def test_retrying_visible_during_backoff(self):
        engine = FakeEngine(outcomes=_failures(1) + [None])
        seen = []
        sup = Supervisor(engine, PARAMS)
        sup._sleep_fn = RecordingSleep(on_sleep=lambda s: seen.append((sup.state, sup.retries)))
        self.assertEqual(sup.state, SupervisorState.IDLE)
        sup.run()
        self.assertEqual(seen, [(SupervisorState.RETRYING, 1)])
        self.assertEqual(sup.state, SupervisorState.TERMINATED)

    def test_running_visible_during_attempt(self):
        engine = FakeEngine(hold=True)
        sup = Supervisor(engine, PARAMS)
        sup.start()
        self.assertTrue(engine.entered.wait(5))
        self.assertEqual(sup.state, SupervisorState.RUNNING)
        engine.release()
        sup.wait(timeout=5)
        self.assertEqual(sup.state, SupervisorState.TERMINATED)


class TestConcurrentQueries(unittest.TestCase):
    """Queries go through the facade and never wait on the supervisor."""

    def _hammer(self, facade, n_threads=8, n_calls=100):
        errors = []

        def worker():
            try:
                for _ in range(n_calls):
                    facade.is_running()
                    facade.get_progress()
                    facade.get_certificate(0)
                    facade.get_manifest()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        self.assertFalse(any(t.is_alive() for t in threads), "queries blocked")
        self.assertEqual(errors, [])

    def test_queries_while_engine_runs(self):
        engine = FakeEngine(
            capabilities=fixture_capabilities(),
            certificates=[make_certificate(0)],
            hold=True,
        )
        facade = QueryFacade(engine)
        sup = Supervisor(engine, PARAMS)
        sup.start()
        self.assertTrue(engine.entered.wait(5))
        self.assertTrue(facade.is_running())
        self._hammer(facade)
        engine.release()
        self.assertTrue(sup.wait(timeout=5))
        self.assertFalse(facade.is_running())

    def test_queries_during_backoff(self):
        in_backoff = threading.Event()
        proceed = threading.Event()

        def blocking_sleep(seconds):
            in_backoff.set()
            proceed.wait(5)

        engine = FakeEngine(
            outcomes=_failures(1) + [None],
            certificates=[make_certificate(0)],
        )
        facade = QueryFacade(engine)
        sup = Supervisor(engine, PARAMS, sleep_fn=blocking_sleep)
        sup.start()
        self.assertTrue(in_backoff.wait(5))
        self.assertFalse(facade.is_running())
        self._hammer(facade)
        proceed.set()
        self.assertTrue(sup.wait(timeout=5))


if __name__ == "__main__":
    unittest.main()
