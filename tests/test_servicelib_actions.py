import unittest
from unittest.mock import patch

from servicelib.plumbing.common import State
from servicelib.plumbing.services import ControlError, ServiceState
from servicelib.tasks import actions
from servicelib.tasks.actions import (Action, ActionRequest, KILL_CEILING, Leg, plan,
                                      ServiceActionEngine, ValidationError)

from .fakes import FakeClock, FakeProcessControl, FakeService, FakeServiceControl


PENDING = (ServiceState.start_pending, ServiceState.stop_pending, ServiceState.continue_pending,
           ServiceState.pause_pending, ServiceState.unknown)


class TestPlan(unittest.TestCase):

    def test_start(self):
        self.assertEqual(plan(ServiceState.running, Action.start), ())
        self.assertEqual(plan(ServiceState.paused, Action.start), (Leg.resume,))
        self.assertEqual(plan(ServiceState.stopped, Action.start), (Leg.start,))

    def test_stop(self):
        self.assertEqual(plan(ServiceState.running, Action.stop), (Leg.stop,))
        self.assertEqual(plan(ServiceState.paused, Action.stop), (Leg.resume, Leg.stop))
        self.assertEqual(plan(ServiceState.stopped, Action.stop), ())

    def test_restart(self):
        self.assertEqual(plan(ServiceState.running, Action.restart), (Leg.stop, Leg.start))
        self.assertEqual(plan(ServiceState.paused, Action.restart),
                         (Leg.resume, Leg.stop, Leg.start))
        self.assertEqual(plan(ServiceState.stopped, Action.restart), (Leg.start,))

    def test_pause(self):
        for state in (ServiceState.running, ServiceState.paused, ServiceState.stopped):
            self.assertEqual(plan(state, Action.pause), ())

    def test_resume(self):
        self.assertEqual(plan(ServiceState.running, Action.resume), ())
        self.assertEqual(plan(ServiceState.paused, Action.resume), (Leg.resume,))
        self.assertEqual(plan(ServiceState.stopped, Action.resume), (Leg.start,))

    def test_pending(self):
        for action in Action:
            for state in PENDING:
                self.assertIsNone(plan(state, action), (action, state))

    def test_legs_chain(self):
        # Each leg must start from where the previous one ended up.
        for action in Action:
            for state in (ServiceState.running, ServiceState.paused, ServiceState.stopped):
                current = state
                for leg in plan(state, action):
                    self.assertIs(leg.source, current, (action, state))
                    current = leg.target


class TestActionParse(unittest.TestCase):

    def test_names(self):
        self.assertIs(Action.parse("Restart"), Action.restart)
        self.assertIs(Action.parse("resume"), Action.resume)
        self.assertIs(Action.parse(" STOP "), Action.stop)
        self.assertIs(Action.parse(Action.pause), Action.pause)

    def test_unknown(self):
        with self.assertRaises(ValidationError):
            Action.parse("Bounce")


class TestActionRequest(unittest.TestCase):

    def test_defaults(self):
        with patch.object(actions, "local_host", return_value="here"):
            request = ActionRequest("Telephony", "Start")
        self.assertEqual(request.host, "here")
        self.assertEqual(request.timeout, 5)
        self.assertFalse(request.force_kill)
        self.assertIsNone(request.operator)

    def test_empty_name(self):
        with self.assertRaises(ValidationError):
            ActionRequest("  ", "Start", "here")

    def test_bad_action(self):
        with self.assertRaises(ValidationError):
            ActionRequest("Telephony", "Bounce", "here")

    def test_zero_timeout(self):
        with self.assertRaises(ValidationError):
            ActionRequest("Telephony", "Start", "here", timeout=0)

    def test_negative_timeout(self):
        with self.assertRaises(ValidationError):
            ActionRequest("Telephony", "Start", "here", timeout=-1)

    def test_non_finite_timeout(self):
        for timeout in (float("nan"), float("inf"), "inf", "-inf"):
            with self.subTest(timeout=timeout), self.assertRaises(ValidationError):
                ActionRequest("Telephony", "Start", "here", timeout=timeout)

    def test_bad_timeout(self):
        with self.assertRaises(ValidationError):
            ActionRequest("Telephony", "Start", "here", timeout="soon")

    def test_validation_error_is_value_error(self):
        self.assertTrue(issubclass(ValidationError, ValueError))


class EngineTestCase(unittest.TestCase):

    state = ServiceState.running
    delays = {}
    failures = ()
    exit_after = 0.0

    def setUp(self):
        self.clock = FakeClock()
        self.service = FakeService("Telephony", "Telephony Service", self.state, pid=4242)
        self.control = FakeServiceControl(self.clock, self.service, delays=self.delays,
                                          failures=self.failures)
        self.processes = FakeProcessControl(self.clock, self.control, self.exit_after)
        self.engine = ServiceActionEngine(self.control, self.processes, clock=self.clock,
                                          sleep=self.clock.sleep)

    def apply(self, action, **kwargs):
        return self.engine.apply(ActionRequest("Telephony", action, "here", **kwargs))


class TestFromRunning(EngineTestCase):

    def test_start_noop(self):
        outcome = self.apply("Start")
        self.assertIs(outcome.final_state, ServiceState.running)
        self.assertEqual(self.control.calls, [])
        self.assertIsNone(outcome.diagnostic)
        self.assertEqual(outcome.result.state, State.unchanged)

    def test_restart(self):
        outcome = self.apply("Restart")
        self.assertEqual(self.control.calls, [("stop", "Telephony"), ("start", "Telephony")])
        self.assertEqual(self.processes.calls, [])
        self.assertEqual(outcome.record(), {"host": "here", "displayName": "Telephony Service",
                                            "name": "Telephony", "state": "Running"})
        self.assertIsNone(outcome.diagnostic)
        self.assertEqual(outcome.result.state, State.success)
        self.assertAlmostEqual(self.clock.now, 2.0)

    def test_stop(self):
        outcome = self.apply("Stop")
        self.assertEqual(self.control.calls, [("stop", "Telephony")])
        self.assertIs(outcome.final_state, ServiceState.stopped)

    def test_pause_noop(self):
        outcome = self.apply("Pause")
        self.assertEqual(self.control.calls, [])
        self.assertIs(outcome.final_state, ServiceState.running)

    def test_resume_noop(self):
        outcome = self.apply("Resume")
        self.assertEqual(self.control.calls, [])
        self.assertIs(outcome.final_state, ServiceState.running)

    def test_by_display_name(self):
        outcome = self.engine.apply(ActionRequest("Telephony Service", "Stop", "here"))
        self.assertEqual(outcome.service_name, "Telephony")
        self.assertEqual(outcome.display_name, "Telephony Service")
        self.assertIs(outcome.final_state, ServiceState.stopped)

    def test_result_tree(self):
        outcome = self.apply("Restart")
        self.assertEqual(len(outcome.result.parts), 2)
        self.assertIn("_leg: success", str(outcome.result))


class TestFromPaused(EngineTestCase):

    state = ServiceState.paused

    def test_stop(self):
        outcome = self.apply("Stop")
        self.assertEqual(self.control.calls, [("resume", "Telephony"), ("stop", "Telephony")])
        self.assertIs(outcome.final_state, ServiceState.stopped)

    def test_restart(self):
        outcome = self.apply("Restart")
        self.assertEqual(self.control.calls, [("resume", "Telephony"), ("stop", "Telephony"),
                                              ("start", "Telephony")])
        self.assertIs(outcome.final_state, ServiceState.running)

    def test_start(self):
        outcome = self.apply("Start")
        self.assertEqual(self.control.calls, [("resume", "Telephony")])
        self.assertIs(outcome.final_state, ServiceState.running)

    def test_pause_noop(self):
        outcome = self.apply("Pause")
        self.assertEqual(self.control.calls, [])
        self.assertIs(outcome.final_state, ServiceState.paused)


class TestFromStopped(EngineTestCase):

    state = ServiceState.stopped

    def test_stop_noop(self):
        outcome = self.apply("Stop")
        self.assertEqual(self.control.calls, [])
        self.assertIs(outcome.final_state, ServiceState.stopped)

    def test_restart(self):
        outcome = self.apply("Restart")
        self.assertEqual(self.control.calls, [("start", "Telephony")])
        self.assertIs(outcome.final_state, ServiceState.running)

    def test_resume(self):
        outcome = self.apply("Resume")
        self.assertEqual(self.control.calls, [("start", "Telephony")])
        self.assertIs(outcome.final_state, ServiceState.running)


class TestFromPending(EngineTestCase):

    state = ServiceState.stop_pending

    def test_no_action(self):
        for action in Action:
            outcome = self.apply(action)
            self.assertIs(outcome.final_state, ServiceState.stop_pending)
            self.assertIn("StopPending", outcome.diagnostic)
        self.assertEqual(self.control.calls, [])
        self.assertEqual(self.clock.now, 0)


class TestPerLegTimeout(EngineTestCase):

    delays = {"stop": 4.0, "start": 4.0}

    def test_each_leg_gets_full_timeout(self):
        outcome = self.apply("Restart", timeout=5)
        self.assertIs(outcome.final_state, ServiceState.running)
        self.assertIsNone(outcome.diagnostic)
        self.assertAlmostEqual(self.clock.now, 8.0)


class TestNeverStarts(EngineTestCase):

    state = ServiceState.stopped
    delays = {"start": None}

    def test_waits_for_timeout(self):
        outcome = self.apply("Start", timeout=5)
        self.assertGreaterEqual(self.clock.now, 5)
        self.assertLess(self.clock.now, 5 + actions.WAIT_POLL)
        self.assertIs(outcome.final_state, ServiceState.start_pending)
        self.assertIn("didn't reach Running", outcome.diagnostic)
        self.assertEqual(self.processes.calls, [])


class TestNeverStops(EngineTestCase):

    delays = {"stop": None}
    exit_after = 3.0

    def test_no_force_kill(self):
        outcome = self.apply("Stop", timeout=5)
        self.assertEqual(self.processes.calls, [])
        self.assertGreaterEqual(self.clock.now, 5)
        self.assertIs(outcome.final_state, ServiceState.stop_pending)
        self.assertIn("didn't reach Stopped", outcome.diagnostic)

    def test_force_kill(self):
        outcome = self.apply("Stop", timeout=30, force_kill=True)
        self.assertEqual(len(self.processes.calls), 1)
        pid, host, when = self.processes.calls[0]
        self.assertEqual((pid, host), (4242, "here"))
        self.assertGreaterEqual(when, 30)
        # Exits early once the process is gone, well before the ceiling.
        self.assertGreaterEqual(self.clock.now, when + 3)
        self.assertLess(self.clock.now, when + KILL_CEILING)
        self.assertIs(outcome.final_state, ServiceState.stopped)

    def test_restart_force_kill(self):
        outcome = self.apply("Restart", timeout=5, force_kill=True)
        self.assertEqual(self.control.calls, [("stop", "Telephony"), ("start", "Telephony")])
        self.assertEqual(len(self.processes.calls), 1)
        self.assertIs(outcome.final_state, ServiceState.running)

    def test_restart_no_force_kill(self):
        outcome = self.apply("Restart", timeout=5)
        self.assertEqual(self.control.calls, [("stop", "Telephony")])
        self.assertIs(outcome.final_state, ServiceState.stop_pending)
        self.assertIn("Can't start Telephony while it is StopPending", outcome.diagnostic)

    def test_no_process(self):
        self.service.pid = None
        outcome = self.apply("Stop", timeout=5, force_kill=True)
        self.assertEqual(self.processes.calls, [])
        self.assertIn("nothing to terminate", outcome.diagnostic)
        self.assertIs(outcome.final_state, ServiceState.stop_pending)


class DeniedLookupControl(FakeServiceControl):

    def process_id(self, name, host):
        raise ControlError("Access is denied.")


class TestLookupDenied(EngineTestCase):

    delays = {"stop": None}

    def setUp(self):
        super().setUp()
        self.control = DeniedLookupControl(self.clock, self.service, delays=self.delays)
        self.processes = FakeProcessControl(self.clock, self.control)
        self.engine = ServiceActionEngine(self.control, self.processes, clock=self.clock,
                                          sleep=self.clock.sleep)

    def test_nothing_to_terminate(self):
        outcome = self.apply("Stop", timeout=5, force_kill=True)
        self.assertEqual(self.processes.calls, [])
        self.assertIn("Couldn't look up process of Telephony on here: Access is denied.",
                      outcome.diagnostic)
        self.assertIn("nothing to terminate", outcome.diagnostic)
        self.assertIs(outcome.final_state, ServiceState.stop_pending)


class UncheckableProcessControl(FakeProcessControl):

    def exists(self, pid, host):
        raise ControlError("The RPC server is unavailable.")


class TestKillCeiling(EngineTestCase):

    delays = {"stop": None}
    exit_after = None

    def test_gives_up(self):
        outcome = self.apply("Stop", timeout=5, force_kill=True)
        self.assertEqual(len(self.processes.calls), 1)
        when = self.processes.calls[0][2]
        self.assertGreaterEqual(self.clock.now, when + KILL_CEILING)
        self.assertLessEqual(self.clock.now, when + KILL_CEILING + actions.KILL_POLL)
        self.assertIn("still present", outcome.diagnostic)
        self.assertIs(outcome.final_state, ServiceState.stop_pending)

    def test_liveness_check_fails(self):
        self.processes = UncheckableProcessControl(self.clock, self.control)
        self.engine = ServiceActionEngine(self.control, self.processes, clock=self.clock,
                                          sleep=self.clock.sleep)
        outcome = self.apply("Stop", timeout=5, force_kill=True)
        when = self.processes.calls[0][2]
        self.assertGreaterEqual(self.clock.now, when + KILL_CEILING)
        self.assertIn("still present", outcome.diagnostic)
        self.assertIs(outcome.final_state, ServiceState.stop_pending)

    def test_termination_failure(self):
        self.processes.fail = True
        outcome = self.apply("Stop", timeout=5, force_kill=True)
        self.assertEqual(len(self.processes.calls), 1)
        self.assertIn("Failed to terminate process 4242", outcome.diagnostic)
        self.assertIs(outcome.final_state, ServiceState.stop_pending)


class VanishingControl(FakeServiceControl):
    """
    Service is uninstalled as soon as it stops.
    """

    def _find(self, name):
        service = super()._find(name)
        if service and service.state is ServiceState.stopped:
            return None
        return service


class TestDisappears(EngineTestCase):

    def setUp(self):
        super().setUp()
        self.control = VanishingControl(self.clock, self.service)
        self.engine = ServiceActionEngine(self.control, self.processes, clock=self.clock,
                                          sleep=self.clock.sleep)

    def test_restart(self):
        outcome = self.apply("Restart", timeout=5)
        self.assertEqual(self.control.calls, [("stop", "Telephony")])
        self.assertIn("Service Telephony disappeared from here before it could start",
                      outcome.diagnostic)
        self.assertFalse(outcome.found)
        self.assertEqual(outcome.record()["state"], "NotFound")


class TestTransitionFailure(EngineTestCase):

    failures = ("stop",)

    def test_reobserves(self):
        outcome = self.apply("Restart", timeout=5)
        self.assertEqual(self.control.calls, [("stop", "Telephony")])
        self.assertIn("Failed to stop Telephony: Access is denied.", outcome.diagnostic)
        self.assertIn("Can't start Telephony while it is Running", outcome.diagnostic)
        self.assertIs(outcome.final_state, ServiceState.running)
        self.assertEqual(outcome.result.state, State.failed)


class TestNotFound(EngineTestCase):

    def test_missing_service(self):
        outcome = self.engine.apply(ActionRequest("Nope", "Start", "here"))
        self.assertFalse(outcome.found)
        self.assertIsNone(outcome.final_state)
        self.assertEqual(outcome.record()["state"], "NotFound")
        self.assertIn("not found", outcome.diagnostic)
        self.assertEqual(self.control.calls, [])

    def test_other_host(self):
        outcome = self.engine.apply(ActionRequest("Telephony", "Stop", "elsewhere"))
        self.assertFalse(outcome.found)
        self.assertEqual(outcome.host, "elsewhere")
        self.assertEqual(self.control.calls, [])

    def test_unreachable(self):
        self.control.unreachable = True
        outcome = self.apply("Restart")
        self.assertFalse(outcome.found)
        self.assertIn("RPC server is unavailable", outcome.diagnostic)
        self.assertEqual(self.control.calls, [])

    def test_operator(self):
        outcome = self.engine.apply(ActionRequest("Nope", "Start", "here", operator="ops-admin"))
        self.assertIn("(requested by ops-admin)", outcome.diagnostic)


class TestValidation(EngineTestCase):

    def test_invalid_action(self):
        with self.assertRaises(ValidationError):
            self.engine.apply(ActionRequest("Telephony", "Bounce", "here"))
        self.assertEqual(self.control.queries, 0)

    def test_not_a_request(self):
        with self.assertRaises(ValidationError):
            self.engine.apply(("Telephony", "Start"))
        self.assertEqual(self.control.queries, 0)


class TestWaitForState(EngineTestCase):

    def test_already_there(self):
        observed = self.engine.wait_for_state("Telephony", "here", ServiceState.running, 5)
        self.assertIs(observed.state, ServiceState.running)
        self.assertEqual(self.clock.sleeps, [])

    def test_times_out(self):
        observed = self.engine.wait_for_state("Telephony", "here", ServiceState.stopped, 2)
        self.assertIs(observed.state, ServiceState.running)
        self.assertAlmostEqual(self.clock.now, 2.0)
        self.assertTrue(all(sleep <= actions.WAIT_POLL for sleep in self.clock.sleeps))

    def test_missing(self):
        observed = self.engine.wait_for_state("Nope", "here", ServiceState.running, 1)
        self.assertFalse(observed)


if __name__ == "__main__":
    unittest.main()
