"""Tests for the exit controller — priority order, ladder, trailing stop, reconciliation.

Tests cover:
  - Timeout strictly outranks the hard stop-loss
  - Hard stop-loss boundary
  - Ladder rungs firing (one or several per tick)
  - Trailing stop from the high-water mark
  - Manual abort
  - Re-crediting rejected exits
"""

import unittest
from decimal import Decimal

from config import ExitConfig
from core.exit_planner import plan_exits
from exchange.models import ExitKind, ExitPlan, LadderRung
from trading.exit_controller import ExitController, ExitRules, RunState, step

D = Decimal


def reference_plan():
    # TP 2.8%, trail 1.68%, ladder 1.028 / 1.043 / 1.058 / 1.073
    return plan_exits(D("1.0"), D("0.02"), D("0.015"), ExitConfig())


def far_ladder_plan(trail="0.0168"):
    return ExitPlan(
        entry_price=D("1.0"),
        volatility_pct=D("0.02"),
        take_profit_pct=D("0.028"),
        trail_pct=D(trail),
        ladder=(LadderRung(D("2.0"), D("1")),),
    )


def make_controller(plan=None, hard_sl="0.12", max_hold=3600.0, skew=200):
    rules = ExitRules(hard_stop_loss_pct=D(hard_sl), max_hold_sec=max_hold, ioc_skew_bps=skew)
    return ExitController(plan or reference_plan(), rules, start_time=0.0)


class TestSafetyRails(unittest.TestCase):

    def test_timeout_outranks_hard_stop(self):
        ctl = make_controller()
        actions = ctl.tick(D("0.5"), 3601.0)
        self.assertEqual(len(actions), 1)
        self.assertEqual(actions[0].kind, ExitKind.TIMEOUT)
        self.assertEqual(actions[0].fraction, D("1"))
        self.assertEqual(actions[0].limit_price, D("0.49"))
        self.assertTrue(ctl.is_exited)

    def test_timeout_is_strictly_greater(self):
        ctl = make_controller()
        self.assertEqual(ctl.tick(D("1.0"), 3600.0), [])
        self.assertFalse(ctl.is_exited)

    def test_hard_stop_loss(self):
        ctl = make_controller()
        actions = ctl.tick(D("0.87"), 10.0)
        self.assertEqual([a.kind for a in actions], [ExitKind.HARD_STOP_LOSS])
        self.assertEqual(actions[0].fraction, D("1"))
        self.assertEqual(actions[0].limit_price, D("0.8526"))
        self.assertEqual(ctl.state.exit_kind, ExitKind.HARD_STOP_LOSS)

    def test_hard_stop_at_exact_level(self):
        ctl = make_controller()
        actions = ctl.tick(D("0.88"), 10.0)
        self.assertEqual([a.kind for a in actions], [ExitKind.HARD_STOP_LOSS])

    def test_hard_stop_takes_remaining_only(self):
        ctl = make_controller()
        ctl.tick(D("1.03"), 1.0)                 # TP1 sells 0.4
        actions = ctl.tick(D("0.80"), 2.0)
        self.assertEqual(actions[0].kind, ExitKind.HARD_STOP_LOSS)
        self.assertEqual(actions[0].fraction, D("0.6"))

    def test_manual_abort_preempts_everything(self):
        ctl = make_controller()
        ctl.request_abort()
        actions = ctl.tick(D("1.5"), 0.0)
        self.assertEqual([a.kind for a in actions], [ExitKind.MANUAL])
        self.assertTrue(ctl.is_exited)

    def test_tick_after_exit_raises(self):
        ctl = make_controller()
        ctl.tick(D("0.5"), 10.0)
        with self.assertRaises(RuntimeError):
            ctl.tick(D("1.0"), 11.0)


class TestLadder(unittest.TestCase):

    def test_single_rung(self):
        ctl = make_controller()
        actions = ctl.tick(D("1.03"), 1.0)
        self.assertEqual(len(actions), 1)
        self.assertEqual(actions[0].kind, ExitKind.PARTIAL_TAKE_PROFIT)
        self.assertEqual(actions[0].rung, 0)
        self.assertEqual(actions[0].fraction, D("0.4"))
        self.assertEqual(actions[0].limit_price, D("1.03") * D("0.98"))
        self.assertEqual(ctl.remaining_fraction, D("0.6"))
        self.assertEqual(ctl.state.next_ladder_index, 1)
        self.assertFalse(ctl.is_exited)

        # Same price again: rung already spent, no trailing breach
        self.assertEqual(ctl.tick(D("1.03"), 2.0), [])

    def test_gap_through_all_rungs_in_one_tick(self):
        ctl = make_controller()
        self.assertEqual(ctl.tick(D("1.01"), 1.0), [])
        self.assertEqual(ctl.tick(D("1.02"), 2.0), [])
        actions = ctl.tick(D("1.10"), 3.0)

        self.assertEqual([a.kind for a in actions], [ExitKind.PARTIAL_TAKE_PROFIT] * 4)
        self.assertEqual([a.rung for a in actions], [0, 1, 2, 3])
        self.assertEqual([a.fraction for a in actions], [D("0.4"), D("0.2"), D("0.2"), D("0.2")])
        self.assertLess(ctl.remaining_fraction, D("1e-9"))
        self.assertTrue(ctl.is_exited)
        self.assertEqual(ctl.state.exit_kind, ExitKind.PARTIAL_TAKE_PROFIT)

    def test_partial_ladder_leaves_remainder(self):
        plan = plan_exits(D("1.0"), D("0.02"), D("0.015"), ExitConfig(ladder_fractions=[D("0.5")]))
        ctl = make_controller(plan)
        actions = ctl.tick(D("1.2"), 1.0)
        self.assertEqual(len(actions), 1)
        self.assertEqual(ctl.remaining_fraction, D("0.5"))
        self.assertFalse(ctl.is_exited)

    def test_high_water_tracks_without_action(self):
        ctl = make_controller()
        ctl.tick(D("1.02"), 1.0)
        ctl.tick(D("1.01"), 2.0)
        self.assertEqual(ctl.state.high_water_price, D("1.02"))


class TestTrailingStop(unittest.TestCase):

    def test_trailing_stop_from_high_water(self):
        ctl = make_controller(far_ladder_plan())
        self.assertEqual(ctl.tick(D("1.2"), 1.0), [])
        # protect level = 1.2 × 0.9832 = 1.17984
        self.assertEqual(ctl.tick(D("1.18"), 2.0), [])
        actions = ctl.tick(D("1.17"), 3.0)
        self.assertEqual([a.kind for a in actions], [ExitKind.TRAILING_STOP])
        self.assertEqual(actions[0].fraction, D("1"))
        self.assertTrue(ctl.is_exited)

    def test_trailing_stop_sells_rest_after_take_profit(self):
        ctl = make_controller()
        ctl.tick(D("1.03"), 1.0)
        # 1.03 × 0.9832 = 1.012696
        actions = ctl.tick(D("1.012"), 2.0)
        self.assertEqual([a.kind for a in actions], [ExitKind.TRAILING_STOP])
        self.assertEqual(actions[0].fraction, D("0.6"))

    def test_no_trailing_at_entry(self):
        ctl = make_controller(far_ladder_plan())
        # High-water starts at entry: 1.0 × 0.9832
        self.assertEqual(ctl.tick(D("0.99"), 1.0), [])
        actions = ctl.tick(D("0.983"), 2.0)
        self.assertEqual([a.kind for a in actions], [ExitKind.TRAILING_STOP])


class TestRejectionReconcile(unittest.TestCase):

    def test_rejected_terminal_exit_reopens(self):
        ctl = make_controller()
        action = ctl.tick(D("0.87"), 1.0)[0]
        ctl.reconcile_rejection(action)
        self.assertFalse(ctl.is_exited)
        self.assertEqual(ctl.remaining_fraction, D("1"))

        again = ctl.tick(D("0.87"), 2.0)
        self.assertEqual([a.kind for a in again], [ExitKind.HARD_STOP_LOSS])

    def test_rejected_rung_refires_at_level(self):
        ctl = make_controller()
        action = ctl.tick(D("1.03"), 1.0)[0]
        ctl.reconcile_rejection(action)
        self.assertEqual(ctl.remaining_fraction, D("1"))
        self.assertEqual(ctl.state.retry_rungs, (0,))

        self.assertEqual(ctl.tick(D("1.02"), 2.0), [])
        actions = ctl.tick(D("1.03"), 3.0)
        self.assertEqual([(a.rung, a.fraction) for a in actions], [(0, D("0.4"))])
        self.assertEqual(ctl.state.retry_rungs, ())
        self.assertEqual(ctl.state.next_ladder_index, 1)
        self.assertEqual(ctl.remaining_fraction, D("0.6"))

    def test_rejected_last_rung_reopens_exited_position(self):
        ctl = make_controller()
        actions = ctl.tick(D("1.10"), 1.0)
        self.assertTrue(ctl.is_exited)
        ctl.reconcile_rejection(actions[-1])
        self.assertFalse(ctl.is_exited)
        self.assertEqual(ctl.remaining_fraction, D("0.2"))

        again = ctl.tick(D("1.10"), 2.0)
        self.assertEqual([a.rung for a in again], [3])
        self.assertTrue(ctl.is_exited)


class TestStep(unittest.TestCase):

    def test_step_returns_new_state(self):
        plan = reference_plan()
        rules = ExitRules(hard_stop_loss_pct=D("0.12"), max_hold_sec=60.0, ioc_skew_bps=0)
        state = RunState.initial(D("1.0"), start_time=0.0)

        new_state, actions = step(state, plan, rules, D("1.03"), 1.0)

        self.assertEqual(state.remaining_fraction, D("1"))
        self.assertEqual(new_state.remaining_fraction, D("0.6"))
        self.assertEqual(actions[0].limit_price, D("1.03"))

    def test_no_action_is_empty_list(self):
        plan = reference_plan()
        rules = ExitRules(hard_stop_loss_pct=D("0.12"), max_hold_sec=60.0, ioc_skew_bps=200)
        state = RunState.initial(D("1.0"), start_time=0.0)
        _, actions = step(state, plan, rules, D("1.0"), 1.0)
        self.assertEqual(actions, [])


if __name__ == "__main__":
    unittest.main()
