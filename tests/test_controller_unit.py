"""Tests for SolverController: configuration, the run loop, and events."""

import asyncio
import math

import pytest

from odesolver import (
    ConfigurationError, ConvergenceError, EquationSyntaxError, EvaluationError,
    InvalidRangeError, Progress, Range, SolverBusyError, SolverController,
    SolverEvent, UnknownVariableError,
)


def _recorder(solver: SolverController) -> dict:
    """Subscribe to every solver event and collect the payloads."""
    events = {event: [] for event in SolverEvent}
    for event in SolverEvent:
        if event is SolverEvent.CANCELED:
            solver.subscribe(event, lambda: events[SolverEvent.CANCELED].append(None))
        else:
            solver.subscribe(event, events[event].append)
    return events


def _oscillator(end: float = 2 * math.pi, step: float = 0.1) -> SolverController:
    solver = SolverController()
    solver.set_equations(["y'' = -y"])
    solver.set_initial_conditions({"y": 0.0, "y_1": 1.0})
    solver.set_range("x", 0.0, end, step)
    return solver


# ── Configuration ────────────────────────────────────────────────────────

class TestConfiguration:
    def test_set_equations_publishes_ordered_variables(self):
        solver = SolverController()
        events = _recorder(solver)
        solver.set_equations(["z' = y", "y'' = -z"])
        assert solver.variables == ["z", "y", "y_1"]
        assert solver.base_variables == ["z", "y"]
        assert events[SolverEvent.EQUATIONS_UPDATED] == [["z", "y", "y_1"]]

    def test_new_equations_invalidate_initial_conditions(self):
        solver = SolverController()
        solver.set_equations(["y' = y"])
        solver.set_initial_conditions({"y": 1.0})
        solver.set_equations(["y'' = -y"])
        assert solver.initial_conditions == {}

    def test_bad_equations_leave_system_unchanged(self):
        solver = SolverController()
        solver.set_equations(["y' = y"])
        with pytest.raises(EquationSyntaxError):
            solver.set_equations(["y' = 1", "y' = 2"])
        assert solver.variables == ["y"]

    def test_independent_variable_cannot_be_an_unknown(self):
        solver = SolverController()
        with pytest.raises(ConfigurationError):
            solver.set_equations(["x' = 1"])

    def test_initial_conditions(self):
        solver = SolverController()
        events = _recorder(solver)
        solver.set_equations(["y'' = -y"])
        solver.set_initial_conditions({"y": 1, "y_1": "0.5"})
        assert solver.initial_conditions == {"y": 1.0, "y_1": 0.5}
        assert events[SolverEvent.INITIAL_CONDITIONS_CHANGED] == [{"y": 1.0, "y_1": 0.5}]

    def test_unknown_initial_condition_is_rejected_without_mutation(self):
        solver = SolverController()
        solver.set_equations(["y' = y"])
        solver.set_initial_conditions({"y": 1.0})
        with pytest.raises(UnknownVariableError) as info:
            solver.set_initial_conditions({"y": 2.0, "z": 1.0})
        assert info.value.name == "z"
        assert solver.initial_conditions == {"y": 1.0}

    @pytest.mark.parametrize("value", ["abc", float("nan"), None])
    def test_non_numeric_initial_condition(self, value):
        solver = SolverController()
        solver.set_equations(["y' = y"])
        with pytest.raises(ConfigurationError):
            solver.set_initial_conditions({"y": value})

    def test_set_range(self):
        solver = SolverController()
        events = _recorder(solver)
        solver.set_range("t", 1.0, 3.0, 0.05)
        assert solver.range == Range("t", 1.0, 3.0, 0.05)
        assert events[SolverEvent.RANGE_CHANGED] == [Range("t", 1.0, 3.0, 0.05)]

    @pytest.mark.parametrize("args", [
        ("x", 1.0, 1.0, 0.1),
        ("x", 2.0, 1.0, 0.1),
        ("x", 0.0, 1.0, 0.0),
        ("x", 0.0, float("inf"), 0.1),
        ("time", 0.0, 1.0, 0.1),
        ("e", 0.0, 1.0, 0.1),
    ])
    def test_invalid_range_is_rejected_without_mutation(self, args):
        solver = SolverController()
        before = solver.range
        with pytest.raises(InvalidRangeError):
            solver.set_range(*args)
        assert solver.range == before

    def test_tolerance_setters_publish(self):
        solver = SolverController()
        events = _recorder(solver)
        solver.set_tolerance(1e-8, 1e-9)
        solver.set_step_limits(1e-6, 0.5)
        solver.set_factor_limits(0.1, 4.0)
        solver.set_safety_factor(0.8)
        solver.set_error_norm("max")

        assert events[SolverEvent.TOLERANCE_CHANGED] == [{"atol": 1e-8, "rtol": 1e-9}]
        assert events[SolverEvent.STEP_LIMITS_CHANGED] == [{"min_step": 1e-6, "max_step": 0.5}]
        assert events[SolverEvent.ADAPTATION_CHANGED][-1] == {
            "safety_factor": 0.8, "min_factor": 0.1, "max_factor": 4.0, "error_norm": "max",
        }
        tol = solver.tolerance
        assert (tol.atol, tol.rtol, tol.min_step, tol.max_step) == (1e-8, 1e-9, 1e-6, 0.5)

    @pytest.mark.parametrize("call", [
        lambda s: s.set_tolerance(-1.0, 1e-6),
        lambda s: s.set_tolerance(1e-6, float("nan")),
        lambda s: s.set_step_limits(0.5, 0.1),
        lambda s: s.set_safety_factor(0.0),
        lambda s: s.set_error_norm("l1"),
    ])
    def test_invalid_tolerance_is_rejected_without_mutation(self, call):
        solver = SolverController()
        before = solver.tolerance
        with pytest.raises(ConfigurationError):
            call(solver)
        assert solver.tolerance == before

    def test_from_settings(self):
        solver = SolverController.from_settings({"atol": 1e-9, "error_norm": "max"})
        assert solver.tolerance.atol == 1e-9
        assert solver.tolerance.error_norm == "max"


# ── Readiness checks ─────────────────────────────────────────────────────

class TestReadiness:
    def test_run_without_equations(self):
        with pytest.raises(ConfigurationError, match="No equations"):
            SolverController().run()

    def test_missing_initial_condition_fails_before_any_progress(self):
        solver = SolverController()
        events = _recorder(solver)
        solver.set_equations(["y'' = -y"])
        solver.set_initial_conditions({"y": 0.0})
        with pytest.raises(ConfigurationError, match="y_1"):
            solver.run()
        assert events[SolverEvent.RUN_STARTED] == []
        assert events[SolverEvent.PROGRESS] == []
        assert solver.is_running is False

    def test_initial_step_reaching_end_is_rejected(self):
        solver = _oscillator()
        solver.set_range("x", 0.0, 1.0, 1.0)
        with pytest.raises(ConfigurationError, match="Range incorrect"):
            solver.run()

    def test_min_step_above_default_max_step(self):
        solver = _oscillator(end=1.0)
        solver.set_step_limits(min_step=0.5)
        with pytest.raises(ConfigurationError, match="min_step"):
            solver.run()


# ── Integration ──────────────────────────────────────────────────────────

class TestRun:
    def test_harmonic_oscillator_reproduces_sine(self):
        solver = _oscillator()
        solver.set_tolerance(1e-10, 1e-8)
        points = solver.run()
        assert len(points) > 10
        for point in points:
            assert point["y"] == pytest.approx(math.sin(point["x"]), abs=1e-4)

    def test_points_cover_interval_monotonically(self):
        solver = _oscillator()
        points = solver.run()
        xs = [p["x"] for p in points]
        assert xs[0] == 0.0
        assert all(b > a for a, b in zip(xs, xs[1:]))
        assert xs[-1] == 2 * math.pi

    def test_points_expose_only_base_variables(self):
        points = _oscillator().run()
        assert list(points[0].keys()) == ["x", "y"]
        assert points[0] == {"x": 0.0, "y": 0.0}

    def test_events_over_a_completed_run(self):
        solver = _oscillator()
        events = _recorder(solver)
        points = solver.run()

        assert events[SolverEvent.RUN_STARTED] == [solver.range]
        assert events[SolverEvent.COMPLETED] == [points]
        assert events[SolverEvent.CANCELED] == []
        progress = events[SolverEvent.PROGRESS]
        assert len(progress) == len(points) - 1
        assert all(isinstance(p, Progress) for p in progress)
        assert [p.x for p in progress] == [pt["x"] for pt in points[1:]]
        assert all(p.error_norm <= 1.0 for p in progress)
        assert all(p.local_error >= 0.0 for p in progress)
        assert solver.last_stats.accepted == len(progress)
        assert solver.last_stats.canceled is False

    def test_tighter_rtol_does_not_increase_reported_local_error(self):
        def max_local_error(rtol):
            solver = _oscillator()
            solver.set_tolerance(1e-10, rtol)
            events = _recorder(solver)
            solver.run()
            return max(p.local_error for p in events[SolverEvent.PROGRESS])

        loose, tight = max_local_error(1e-6), max_local_error(1e-7)
        assert tight <= loose
        assert tight < 1e-6

    def test_tighter_rtol_does_not_increase_global_error(self):
        def final_error(rtol):
            solver = SolverController()
            solver.set_equations(["y' = y"])
            solver.set_initial_conditions({"y": 1.0})
            solver.set_range("x", 0.0, 2.0, 0.1)
            solver.set_tolerance(1e-12, rtol)
            return abs(solver.run()[-1]["y"] - math.exp(2.0))

        assert final_error(1e-7) <= final_error(1e-6)

    def test_fixed_step_mode_takes_exactly_ten_steps(self):
        solver = SolverController()
        events = _recorder(solver)
        solver.set_equations(["y' = y"])
        solver.set_initial_conditions({"y": 1.0})
        solver.set_range("x", 0.0, 1.0, 0.1)
        solver.set_tolerance(1e-15, 1e-15)

        points = solver.run(adaptive=False)
        assert len(points) == 11
        assert len(events[SolverEvent.PROGRESS]) == 10
        assert points[-1]["x"] == 1.0
        assert points[-1]["y"] == pytest.approx(math.e, abs=1e-6)
        assert all(p.step_size == pytest.approx(0.1) for p in events[SolverEvent.PROGRESS])
        assert solver.last_stats.rejected == 0

    def test_coupled_system(self):
        solver = SolverController()
        solver.set_equations(["p' = q", "q' = -p"])
        solver.set_initial_conditions({"p": 0.0, "q": 1.0})
        solver.set_range("t", 0.0, 3.0, 0.1)
        solver.set_tolerance(1e-10, 1e-10)
        last = solver.run()[-1]
        assert last["t"] == 3.0
        assert last["p"] == pytest.approx(math.sin(3.0), abs=1e-6)
        assert last["q"] == pytest.approx(math.cos(3.0), abs=1e-6)

    def test_max_error_norm_policy_runs(self):
        solver = _oscillator()
        solver.set_error_norm("max")
        points = solver.run()
        assert points[-1]["y"] == pytest.approx(0.0, abs=1e-3)

    def test_solver_is_reusable(self):
        solver = _oscillator(end=1.0)
        first = solver.run()
        second = solver.run()
        assert first == second


# ── Cancellation ─────────────────────────────────────────────────────────

class TestCancellation:
    def test_cancel_after_n_progress_events(self):
        solver = _oscillator(end=20.0)
        events = _recorder(solver)

        def stop_after_three(progress):
            if len(events[SolverEvent.PROGRESS]) == 3:
                solver.cancel()

        solver.subscribe(SolverEvent.PROGRESS, stop_after_three)
        points = solver.run()

        assert len(points) == 4
        assert len(events[SolverEvent.CANCELED]) >= 1
        assert events[SolverEvent.COMPLETED] == []
        assert solver.last_stats.canceled is True
        assert solver.is_running is False

    def test_cancel_before_first_step_keeps_initial_point(self):
        solver = _oscillator()
        solver.subscribe(SolverEvent.RUN_STARTED, lambda rng: solver.cancel())
        points = solver.run()
        assert points == [{"x": 0.0, "y": 0.0}]

    def test_cancel_outside_a_run_does_not_affect_the_next_one(self):
        solver = _oscillator(end=1.0)
        events = _recorder(solver)
        solver.cancel()
        assert len(events[SolverEvent.CANCELED]) == 1
        points = solver.run()
        assert points[-1]["x"] == 1.0
        assert len(events[SolverEvent.COMPLETED]) == 1

    def test_async_cancel_from_another_task(self):
        solver = _oscillator(end=50.0)
        seen = []
        solver.subscribe("progress", seen.append)

        async def scenario():
            task = asyncio.create_task(solver.run_async())
            while len(seen) < 2:
                await asyncio.sleep(0)
            solver.cancel()
            return await task

        points = asyncio.run(scenario())
        assert len(points) == len(seen) + 1
        assert points[-1]["x"] < 50.0
        assert solver.last_stats.canceled is True

    def test_async_run_completes(self):
        solver = _oscillator(end=1.0)
        points = asyncio.run(solver.run_async())
        assert points[-1]["x"] == 1.0


# ── Busy guard and run-time failures ─────────────────────────────────────

class TestBusyAndFailures:
    def test_reentrant_run_is_busy(self):
        solver = _oscillator()
        errors = []

        def reenter(progress):
            try:
                solver.run()
            except SolverBusyError as exc:
                errors.append(exc)

        solver.subscribe(SolverEvent.PROGRESS, reenter)
        points = solver.run()
        assert errors and len(errors) == len(points) - 1
        assert solver.is_running is False

    def test_configuration_is_blocked_while_running(self):
        solver = _oscillator()
        errors = []

        def reconfigure(progress):
            for call in (lambda: solver.set_tolerance(1e-3, 1e-3),
                         lambda: solver.set_range("x", 0, 1, 0.1),
                         lambda: solver.set_equations(["y' = 1"]),
                         lambda: solver.set_initial_conditions({"y": 1.0})):
                try:
                    call()
                except SolverBusyError as exc:
                    errors.append(exc)

        off = solver.subscribe(SolverEvent.PROGRESS, reconfigure)
        solver.run()
        off()
        assert len(errors) >= 4
        assert solver.tolerance.atol == 1e-6

    def test_concurrent_async_runs(self):
        solver = _oscillator()

        async def scenario():
            first = asyncio.create_task(solver.run_async())
            await asyncio.sleep(0)
            with pytest.raises(SolverBusyError):
                await solver.run_async()
            return await first

        points = asyncio.run(scenario())
        assert points[-1]["x"] == 2 * math.pi

    def test_unbound_name_is_fatal_evaluation_error(self):
        solver = SolverController()
        events = _recorder(solver)
        solver.set_equations(["y' = y + k"])
        solver.set_initial_conditions({"y": 1.0})
        with pytest.raises(EvaluationError) as info:
            solver.run()
        assert info.value.name == "k"
        assert events[SolverEvent.COMPLETED] == []
        assert solver.is_running is False

        solver.set_equations(["y' = y"])
        solver.set_initial_conditions({"y": 1.0})
        assert solver.run()[-1]["x"] == 1.0

    def test_step_below_minimum_raises_convergence_error(self):
        solver = SolverController()
        solver.set_equations(["y'' = -100y"])
        solver.set_initial_conditions({"y": 1.0, "y_1": 0.0})
        solver.set_range("x", 0.0, 1.0, 0.1)
        solver.set_tolerance(1e-14, 1e-14)
        solver.set_step_limits(min_step=0.05, max_step=0.5)
        with pytest.raises(ConvergenceError) as info:
            solver.run()
        assert info.value.step <= 0.05
        assert solver.is_running is False
